"""Error taxonomy for the sync engine.

Only ConfigurationError, SourceUnavailable and exhausted-retry destination
errors end a run; everything else is counted and logged where it happens.
"""

from typing import Optional


class NotionMirrorError(Exception):
    """Base error carrying a human-readable message and an error kind."""

    kind = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message}


class ConfigurationError(NotionMirrorError):
    """Missing or invalid credential/identifier. Raised before any network call."""

    kind = "configuration"


class NotionAPIError(NotionMirrorError):
    """Non-2xx response from the Notion API."""

    kind = "notion_api"

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.status = status


class SourceUnavailable(NotionMirrorError):
    """Schema or record fetch failed after retries were exhausted."""

    kind = "source_unavailable"


class DestinationError(NotionMirrorError):
    """Destination write failed after retries were exhausted."""

    kind = "destination"


class SchemaCacheError(DestinationError):
    """Destination reported a column as unknown right after it was provisioned."""

    kind = "schema_cache"


class SyncError(NotionMirrorError):
    """A sync run was aborted. Keeps the kind and code of the underlying error."""

    kind = "sync"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        code = None
        if isinstance(cause, NotionMirrorError):
            code = cause.code or cause.kind
        super().__init__(message, code=code)
        self.cause = cause
