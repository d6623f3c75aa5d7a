"""FastAPI wrapper for the placeholder mapping and learning engine."""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.config.settings_loader import LearningSettings, load_settings
from core.learning.engine import LearningEngine
from core.learning.models import Feedback
from core.mapping.field_matcher import categorize_placeholder
from core.mapping.mapping_store import MappingStore
from core.mapping.models import CATEGORIES, PlaceholderMapping
from core.orchestrator.pipeline import TemplateFillGenerator, prepare_mappings, run_generation
from core.storage.kv_store import JsonFileStore
from core.storage.letter_store import LetterStore
from core.templates.placeholder_parser import parse_template_text
from core.utils.errors import InvalidInputError, StorageWriteError

app = FastAPI(title="letterfill API", version="0.1.0")
logger = logging.getLogger("letterfill.api")

_REQUEST_ID_HEADER = "X-Letterfill-Request-Id"


class PlaceholdersRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_text: str


class MappingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_text: str
    record: dict[str, Any]
    auto_learn: bool = False


class SavePatternRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mappings: dict[str, str]
    name: str | None = None


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_text: str
    mappings: dict[str, str] = Field(default_factory=dict)
    custom_instructions: str | None = None


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_text: str
    generated_text: str
    feedback: Feedback
    notes: str | None = None


class InstructionsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_text: str
    mappings: dict[str, str] = Field(default_factory=dict)
    custom_instructions: str | None = None


class SaveLetterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record: dict[str, Any]
    content: str
    generated_text: str | None = None


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header and a start/done log pair."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    started = time.perf_counter()
    _log_event(logging.INFO, "start", request_id, path=request.url.path, method=request.method)
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        logger.exception("unhandled error request_id=%s", request_id)
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(_REQUEST_ID_HEADER, request_id)
    _log_event(
        logging.INFO,
        "done",
        request_id,
        path=request.url.path,
        status_code=response.status_code,
        total_ms=_elapsed_ms(started),
    )
    return response


@app.exception_handler(ApiRequestError)
async def api_request_error_handler(request: Request, exc: ApiRequestError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    _log_event(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "error",
        request_id,
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return _error_response(
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        request_id=request_id,
        detail=exc.detail,
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    detail: dict[str, Any] = {}
    if exc.placeholder is not None:
        detail["placeholder"] = exc.placeholder
    if exc.field is not None:
        detail["field"] = exc.field
    return await api_request_error_handler(
        request,
        ApiRequestError(
            status_code=400, error_code="INVALID_INPUT", message=str(exc), detail=detail
        ),
    )


@app.exception_handler(StorageWriteError)
async def storage_write_handler(request: Request, exc: StorageWriteError) -> JSONResponse:
    return await api_request_error_handler(
        request,
        ApiRequestError(
            status_code=503,
            error_code="STORAGE_UNAVAILABLE",
            message=str(exc),
            detail={"key": exc.key} if exc.key else {},
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return await api_request_error_handler(
        request,
        ApiRequestError(
            status_code=422,
            error_code="INVALID_ARGUMENT",
            message="request body failed validation",
            detail={"errors": json.loads(json.dumps(exc.errors(), default=str))},
        ),
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/health")
async def health() -> dict[str, bool]:
    """Legacy liveness endpoint."""

    return {"ok": True}


@app.get("/v1/meta")
def meta_v1(request: Request) -> JSONResponse:
    """Metadata endpoint for web/bootstrap clients."""

    request_id = _request_id_from_request(request)
    if not _meta_enabled():
        return _error_response(
            status_code=404,
            error_code="NOT_FOUND",
            message="meta endpoint is disabled",
            request_id=request_id,
            detail={"path": request.url.path},
        )

    settings = _load_settings()
    payload = {
        "categories": list(CATEGORIES),
        "feedback_values": ["positive", "negative"],
        "event_log_limit": settings.event_log_limit,
        "enrichment_success_threshold": settings.enrichment_success_threshold,
        "version": app.version,
    }
    return JSONResponse(status_code=200, headers={_REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/placeholders")
def placeholders_v1(body: PlaceholdersRequest) -> dict[str, Any]:
    """Extract placeholders with categories and bracket diagnostics."""

    result = parse_template_text(body.template_text)
    return {
        "placeholders": [
            {"placeholder": item, "category": categorize_placeholder(item)}
            for item in result.placeholders
        ],
        "issues": [asdict(item) for item in result.issues],
    }


@app.post("/v1/mappings")
def mappings_v1(body: MappingsRequest) -> dict[str, Any]:
    """Propose values for each placeholder from one record."""

    settings = _load_settings()
    mapping_store = prepare_mappings(
        body.template_text, body.record, _open_store(settings), auto_learn=body.auto_learn
    )
    return {
        "mappings": _mappings_payload(mapping_store.mappings),
        "unmapped": mapping_store.unmapped(),
        "storage_warnings": mapping_store.storage_warnings,
    }


@app.post("/v1/patterns")
def save_pattern_v1(body: SavePatternRequest) -> dict[str, Any]:
    """Save confirmed mappings as a named pattern."""

    settings = _load_settings()
    mapping_store = MappingStore.from_generation_payload(
        body.mappings, storage=_open_store(settings)
    )
    key = mapping_store.save_pattern(body.name)
    return {"key": key, "storage_warnings": mapping_store.storage_warnings}


@app.get("/v1/patterns")
def list_patterns_v1() -> dict[str, Any]:
    """List learned template patterns and saved mapping patterns."""

    settings = _load_settings()
    storage = _open_store(settings)
    engine = LearningEngine(storage, settings)
    mapping_store = MappingStore(storage=storage)
    return {
        "template_patterns": {
            key: pattern.model_dump(mode="json") for key, pattern in engine.get_patterns().items()
        },
        "saved_patterns": [
            item.model_dump(mode="json") for item in mapping_store.list_saved_patterns()
        ],
        "storage_warnings": [*engine.storage_warnings, *mapping_store.storage_warnings],
    }


@app.post("/v1/generate")
def generate_v1(body: GenerateRequest) -> dict[str, Any]:
    """Fill the template with confirmed mappings and record the learning event."""

    settings = _load_settings()
    storage = _open_store(settings)
    mapping_store = MappingStore.from_generation_payload(body.mappings, storage=storage)
    engine = LearningEngine(storage, settings)
    output = run_generation(
        body.template_text,
        mapping_store,
        engine,
        TemplateFillGenerator(),
        custom_instructions=body.custom_instructions,
    )
    return output.model_dump(mode="json")


@app.post("/v1/feedback")
def feedback_v1(body: FeedbackRequest) -> dict[str, Any]:
    """Append user feedback as a learning event."""

    settings = _load_settings()
    engine = LearningEngine(_open_store(settings), settings)
    event = engine.record_feedback(
        body.template_text, body.generated_text, body.feedback, body.notes
    )
    return {"event": event.model_dump(mode="json"), "storage_warnings": engine.storage_warnings}


@app.get("/v1/suggestions")
def suggestions_v1() -> dict[str, Any]:
    """Improvement suggestions derived from feedback history."""

    settings = _load_settings()
    engine = LearningEngine(_open_store(settings), settings)
    return {
        "suggestions": engine.compute_improvement_suggestions(),
        "stats": engine.stats().model_dump(mode="json"),
        "storage_warnings": engine.storage_warnings,
    }


@app.post("/v1/instructions")
def instructions_v1(body: InstructionsRequest) -> dict[str, Any]:
    """Build enriched instructions for the external generation call."""

    settings = _load_settings()
    engine = LearningEngine(_open_store(settings), settings)
    return {
        "instructions": engine.build_enriched_instructions(
            body.template_text, body.mappings, body.custom_instructions
        ),
        "storage_warnings": engine.storage_warnings,
    }


@app.post("/v1/letters")
def save_letter_v1(body: SaveLetterRequest) -> dict[str, Any]:
    """Save a generated or edited letter for the record's plaintiff."""

    letter_store = LetterStore(_open_store(_load_settings()))
    letter = letter_store.save(body.record, body.content, body.generated_text)
    return {
        "letter": letter.model_dump(mode="json"),
        "storage_warnings": letter_store.storage_warnings,
    }


@app.get("/v1/letters")
def list_letters_v1() -> dict[str, Any]:
    """Saved letters, newest first."""

    letter_store = LetterStore(_open_store(_load_settings()))
    letters = letter_store.list_letters()
    return {
        "letters": [item.model_dump(mode="json") for item in letters],
        "storage_warnings": letter_store.storage_warnings,
    }


@app.delete("/v1/letters/{letter_id}")
def delete_letter_v1(letter_id: str) -> dict[str, Any]:
    letter_store = LetterStore(_open_store(_load_settings()))
    if not letter_store.delete(letter_id):
        raise ApiRequestError(
            status_code=404,
            error_code="NOT_FOUND",
            message="saved letter not found",
            detail={"letter_id": letter_id},
        )
    return {"deleted": letter_id, "storage_warnings": letter_store.storage_warnings}


def _load_settings() -> LearningSettings:
    try:
        return load_settings()
    except ValueError as exc:
        raise ApiRequestError(
            status_code=500,
            error_code="INVALID_SETTINGS",
            message=str(exc),
        ) from exc


def _open_store(settings: LearningSettings) -> JsonFileStore:
    return JsonFileStore(settings.store_path)


def _mappings_payload(mappings: list[PlaceholderMapping]) -> list[dict[str, str]]:
    return [asdict(item) for item in mappings]


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _meta_enabled() -> bool:
    raw = os.getenv("LETTERFILL_ENABLE_META", "1").strip().lower()
    return raw not in {"0", "false", "off", "no"}


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={_REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, _dump_json(payload))
