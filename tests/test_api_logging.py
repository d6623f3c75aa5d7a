from __future__ import annotations

import logging
from pathlib import Path

import httpx
import pytest

from apps.api.main import app


@pytest.mark.anyio
async def test_api_logs_request_id_for_success(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="letterfill.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/v1/placeholders", json={"template_text": "Dear [CLIENT NAME]"})

    assert response.status_code == 200
    request_id = response.headers["X-Letterfill-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "letterfill.api"]
    assert any('"event":"start"' in message and request_id in message for message in messages)
    assert any(
        '"event":"done"' in message and request_id in message and '"status_code":200' in message
        for message in messages
    )


@pytest.mark.anyio
async def test_api_logs_request_id_and_error_code_for_failure(
    caplog: pytest.LogCaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    caplog.set_level(logging.INFO, logger="letterfill.api")
    monkeypatch.delenv("LETTERFILL_SETTINGS", raising=False)
    monkeypatch.setenv("LETTERFILL_STORE_PATH", str(tmp_path / "store.json"))

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/generate",
            json={"template_text": "[A]", "mappings": {"[A]": "x"}},
        )
        bad = await client.post(
            "/v1/generate",
            json={"template_text": "[A]", "mappings": {"[A]": "x"}, "extra": True},
        )

    assert response.status_code == 200
    assert bad.status_code == 422
    request_id = bad.headers["X-Letterfill-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "letterfill.api"]
    assert any(
        '"event":"error"' in message
        and request_id in message
        and '"error_code":"INVALID_ARGUMENT"' in message
        for message in messages
    )
