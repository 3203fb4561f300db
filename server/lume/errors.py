from __future__ import annotations


class LumeError(Exception):
    """Base error; the HTTP layer maps ``status_code`` onto the response."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(LumeError):
    status_code = 400


class NotFound(LumeError):
    status_code = 404


class Forbidden(LumeError):
    status_code = 403


class VersionConflict(LumeError):
    status_code = 409


class UpstreamProviderError(LumeError):
    """Model call failed. Reported inside the stream, never as a status code."""

    status_code = 502


class PersistenceError(LumeError):
    """A write after streaming started failed. Logged only."""
