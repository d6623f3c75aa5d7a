"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.templates.models import ParseResult


class InvalidInputError(ValueError):
    """Raised when a template or record cannot be processed."""

    def __init__(
        self,
        message: str,
        *,
        placeholder: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.placeholder = placeholder
        self.field = field


class TemplateError(Exception):
    """Raised when template brackets are malformed in strict mode."""

    def __init__(self, message: str, *, result: ParseResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class StorageError(Exception):
    """Base error for key-value store failures."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class StorageReadError(StorageError):
    """Raised when persisted data is unavailable or unparseable."""


class StorageWriteError(StorageError):
    """Raised when persisted data cannot be written."""
