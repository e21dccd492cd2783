"""Typed failures surfaced to the caller of a diff/merge request."""

from __future__ import annotations

from typing import Any


class ReconcileError(Exception):
    """Base class for request-scoped failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


class InputShapeError(ReconcileError):
    """A required input is missing or decodes to nothing usable."""


class SchemaDetectionError(ReconcileError):
    """Mandatory columns could not be located.

    Carries the detected headers and one sample row so a human can pick the
    right override value.
    """

    def __init__(
        self,
        message: str,
        *,
        detected_headers: list[str] | None = None,
        sample_row: dict[str, Any] | None = None,
        suggestion: str = "",
    ) -> None:
        super().__init__(message)
        self.detected_headers = list(detected_headers or [])
        self.sample_row = dict(sample_row or {})
        self.suggestion = suggestion

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["detected_headers"] = list(self.detected_headers)
        payload["sample_row"] = dict(self.sample_row)
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload
