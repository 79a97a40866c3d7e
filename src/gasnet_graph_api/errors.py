from typing import Any, Dict, Optional


class GasNetError(Exception):
    """Base class for errors surfaced by the gas network API."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(GasNetError):
    """Client input was rejected before any graph query ran."""


class NotFoundError(GasNetError):
    """A single-entity lookup matched nothing."""


class ConflictError(GasNetError):
    """A uniqueness constraint was violated on create."""


class WritesDisabledError(GasNetError):
    """A mutating endpoint was called while writes are disabled."""

    def __init__(self, message: str = "Write endpoints disabled. Set GASNET_ENABLE_WRITES=true to enable.") -> None:
        super().__init__(message)


class QueryExecutionError(GasNetError):
    """The graph database failed to execute a query."""


class AuthenticationError(GasNetError):
    """The request carried no valid API key while auth is required."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class AuthNotConfiguredError(GasNetError):
    """Auth is required but no API keys are configured."""

    def __init__(self, message: str = "Auth not configured") -> None:
        super().__init__(message)
