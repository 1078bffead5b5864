"""
Shared exceptions.

Domain errors that surface at the API boundary carry a stable machine-readable
``code`` next to the human message.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base application error."""

    code: str = "APP_ERROR"

    def __init__(
        self,
        message: str = "Application error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class NotFoundError(AppError):
    code = "NOT_FOUND"


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
