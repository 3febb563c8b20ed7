"""Exception hierarchy for llmusage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from llmusage.models import Service


class LLMUsageError(Exception):
    """Base class for every error raised by llmusage."""


class NotReadyError(LLMUsageError):
    """An orchestrator operation was called before ``setup()``."""


class NoClientForServiceError(LLMUsageError):
    def __init__(self, service: Service):
        self.service = service
        super().__init__(f"No usage client registered for {service.display_name}")


class PersistenceError(LLMUsageError):
    """The account store could not be flushed; in-memory state was not committed."""


# ---------------------------------------------------------------------------
# Usage client errors
# ---------------------------------------------------------------------------


class UsageClientError(LLMUsageError):
    """Base class for failures of a remote usage fetch."""


class NoTokenError(UsageClientError):
    def __init__(self, message: str = "Account has no usable token"):
        super().__init__(message)


class TokenExpiredError(UsageClientError):
    def __init__(self, message: str = "Token expired or rejected by the server"):
        super().__init__(message)


class UnauthorizedError(UsageClientError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidResponseError(UsageClientError):
    def __init__(self, message: str = "Invalid response"):
        super().__init__(message)


class HTTPStatusError(UsageClientError):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class NetworkError(UsageClientError):
    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Network error{detail}")
