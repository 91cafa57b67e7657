"""Error taxonomy shared by the API endpoints and the import/metadata services."""
from __future__ import annotations


class ShelfmarkError(Exception):
    """
    Base error that carries an HTTP status and a JSON-friendly body.

    The API blueprint converts these into ``{"error": ..., "details": ...}``
    responses; ``details`` is omitted when empty.
    """

    status_code = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInput(ShelfmarkError):
    """Malformed URL or missing required field."""

    status_code = 400


class Unauthorized(ShelfmarkError):
    status_code = 401


class UnsupportedFormat(ShelfmarkError):
    """Import file extension or declared format is not recognized."""

    status_code = 400


class MalformedInput(ShelfmarkError):
    """Import file content could not be parsed."""

    status_code = 500


class UpstreamError(ShelfmarkError):
    """An outbound call (page fetch, AI endpoint) failed."""

    def __init__(
        self, message: str, status_code: int = 500, details: str | None = None
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = clamp_status(status_code)


def clamp_status(status_code: int | None) -> int:
    if status_code is None or not 200 <= status_code <= 599:
        return 500
    return status_code
