class MarkStreamError(Exception):
    """Base class for errors raised by MarkStream services."""


class AuthError(MarkStreamError):
    """The session is missing, expired, or was rejected by the provider."""


class StoreError(MarkStreamError):
    """A request to the bookmark store failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(MarkStreamError):
    """User input was rejected before any network call."""
