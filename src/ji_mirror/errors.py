"""Error taxonomy for remote calls and local mirror operations.

Every failure that crosses a module boundary is one of the categories below.
Retry, sync and batch code dispatch on ``error.tag`` only, never on message
text. ``classify_error`` is the single place where foreign exceptions
(httpx, json, sqlite3, pydantic, anything else) are mapped onto the taxonomy.
"""

import json
import sqlite3
from enum import Enum
from typing import Any

import httpx
import pydantic

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "ContentTooLargeError",
    "DataConflictError",
    "ErrorTag",
    "MirrorError",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "RateLimitedError",
    "RequestTimeoutError",
    "StorageError",
    "ValidationError",
    "classify_error",
    "error_for_status",
]


class ErrorTag(str, Enum):
    """Stable category identifiers carried by every MirrorError."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION_FAILED = "authentication_failed"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    PARSE = "parse"
    DATA_CONFLICT = "data_conflict"
    CONFIGURATION = "configuration"
    STORAGE = "storage"


TRANSIENT_TAGS = frozenset({ErrorTag.NETWORK, ErrorTag.TIMEOUT, ErrorTag.RATE_LIMITED})


class MirrorError(Exception):
    """Base class for all categorized failures.

    Instances are immutable once constructed: the category, originating module
    and detail fields are set in ``__init__`` and assignment afterwards raises
    ``AttributeError``.

    Attributes:
        tag: ErrorTag category
        module: Name of the originating module ("network", "auth", ...)
        message: Human-readable description
        cause: Underlying exception, if any
    """

    tag: ErrorTag = ErrorTag.NETWORK
    default_module = "network"

    def __init__(
        self,
        message: str,
        *,
        module: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        object.__setattr__(self, "_message", message)
        object.__setattr__(self, "_module", module or self.default_module)
        object.__setattr__(self, "_cause", cause)
        object.__setattr__(self, "_frozen", True)

    def __setattr__(self, name: str, value: Any) -> None:
        # Exception machinery writes dunder attributes while raising
        if name.startswith("__") or not self.__dict__.get("_frozen"):
            object.__setattr__(self, name, value)
            return
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def message(self) -> str:
        return self._message

    @property
    def module(self) -> str:
        return self._module

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    @property
    def transient(self) -> bool:
        """True for categories that may succeed when retried."""
        return self.tag in TRANSIENT_TAGS

    def details(self) -> dict[str, Any]:
        """Category-specific fields, overridden by subclasses."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and CLI output."""
        data: dict[str, Any] = {
            "tag": self.tag.value,
            "module": self.module,
            "message": self.message,
        }
        data.update(self.details())
        return data

    def __str__(self) -> str:
        return f"[{self.tag.value}] {self.message}"


class NetworkError(MirrorError):
    """Connection failures and server-side (5xx) errors."""

    tag = ErrorTag.NETWORK


class RequestTimeoutError(MirrorError):
    """The remote call exceeded its time limit."""

    tag = ErrorTag.TIMEOUT


class RateLimitedError(MirrorError):
    """The remote side asked us to slow down (HTTP 429).

    Attributes:
        retry_after: Server-suggested wait in seconds, if provided
    """

    tag = ErrorTag.RATE_LIMITED

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any) -> None:
        object.__setattr__(self, "_retry_after", retry_after)
        super().__init__(message, **kwargs)

    @property
    def retry_after(self) -> float | None:
        return self._retry_after

    def details(self) -> dict[str, Any]:
        return {"retry_after": self.retry_after}


class AuthenticationError(MirrorError):
    """Credentials rejected (HTTP 401/403)."""

    tag = ErrorTag.AUTHENTICATION_FAILED
    default_module = "auth"


class NotFoundError(MirrorError):
    """The requested remote entity does not exist (HTTP 404)."""

    tag = ErrorTag.NOT_FOUND


class ValidationError(MirrorError):
    """Input rejected before or by the remote side."""

    tag = ErrorTag.VALIDATION
    default_module = "validation"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        object.__setattr__(self, "_field", field)
        object.__setattr__(self, "_value", value)
        super().__init__(message, **kwargs)

    @property
    def field(self) -> str | None:
        return self._field

    @property
    def value(self) -> Any:
        return self._value

    def details(self) -> dict[str, Any]:
        return {"field": self.field, "value": _preview(self.value)}


class ContentTooLargeError(ValidationError):
    """Item body exceeds the configured maximum size. Never truncated."""

    def __init__(self, message: str, *, size: int, max_size: int, **kwargs: Any) -> None:
        object.__setattr__(self, "_size", size)
        object.__setattr__(self, "_max_size", max_size)
        super().__init__(message, field="body", value=size, **kwargs)

    @property
    def size(self) -> int:
        return self._size

    @property
    def max_size(self) -> int:
        return self._max_size

    def details(self) -> dict[str, Any]:
        return {"field": "body", "size": self.size, "max_size": self.max_size}


class ParseError(MirrorError):
    """Remote data could not be turned into a domain value."""

    tag = ErrorTag.PARSE
    default_module = "parse"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        raw_value: Any = None,
        **kwargs: Any,
    ) -> None:
        object.__setattr__(self, "_field", field)
        object.__setattr__(self, "_raw_value", raw_value)
        super().__init__(message, **kwargs)

    @property
    def field(self) -> str | None:
        return self._field

    @property
    def raw_value(self) -> Any:
        return self._raw_value

    def details(self) -> dict[str, Any]:
        return {"field": self.field, "raw_value": _preview(self.raw_value)}


class DataConflictError(MirrorError):
    """Stored state disagrees with an incoming write."""

    tag = ErrorTag.DATA_CONFLICT
    default_module = "store"

    def __init__(
        self,
        message: str,
        *,
        expected: Any = None,
        actual: Any = None,
        **kwargs: Any,
    ) -> None:
        object.__setattr__(self, "_expected", expected)
        object.__setattr__(self, "_actual", actual)
        super().__init__(message, **kwargs)

    @property
    def expected(self) -> Any:
        return self._expected

    @property
    def actual(self) -> Any:
        return self._actual

    def details(self) -> dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual}


class ConfigurationError(MirrorError):
    """Missing or invalid settings (credentials, base URL, paths)."""

    tag = ErrorTag.CONFIGURATION
    default_module = "config"


class StorageError(MirrorError):
    """Local database failure."""

    tag = ErrorTag.STORAGE
    default_module = "store"


def _preview(value: Any, limit: int = 100) -> Any:
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "..."
    return value


def error_for_status(
    status: int,
    message: str,
    *,
    retry_after: float | None = None,
    module: str = "network",
) -> MirrorError:
    """Map an HTTP status code to its taxonomy error.

    Args:
        status: HTTP status code (>= 400)
        message: Description used as the error message
        retry_after: Parsed Retry-After value for 429 responses
        module: Originating module name

    Returns:
        The categorized error (not raised)
    """
    if status in (401, 403):
        return AuthenticationError(message, module="auth")
    if status == 404:
        return NotFoundError(message, module=module)
    if status == 429:
        return RateLimitedError(message, retry_after=retry_after, module=module)
    if status == 408:
        return RequestTimeoutError(message, module=module)
    if 400 <= status < 500:
        return ValidationError(message, field="request", value=status, module="validation")
    return NetworkError(message, module=module)


def classify_error(exc: BaseException) -> MirrorError:
    """Map any exception onto the taxonomy. Total: never raises.

    Taxonomy errors pass through unchanged. Unknown failures fall back to
    message-substring heuristics and finally to NetworkError.
    """
    if isinstance(exc, MirrorError):
        return exc

    if isinstance(exc, pydantic.ValidationError):
        return ConfigurationError(f"Invalid settings: {exc}", cause=exc)
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out: {exc}", cause=exc)
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(
            exc.response.status_code,
            f"HTTP {exc.response.status_code}: {exc}",
        )
    if isinstance(exc, httpx.TransportError):
        return NetworkError(f"Connection error: {exc}", cause=exc)
    if isinstance(exc, json.JSONDecodeError):
        return ParseError(f"Invalid JSON: {exc}", field="response", raw_value=exc.doc, cause=exc)
    if isinstance(exc, sqlite3.IntegrityError):
        return DataConflictError(f"Constraint violated: {exc}", cause=exc)
    if isinstance(exc, sqlite3.Error):
        return StorageError(f"Database error: {exc}", cause=exc)

    text = str(exc)
    lowered = text.lower()
    if "401" in text or "403" in text or "unauthorized" in lowered:
        return AuthenticationError(text, cause=exc)
    if "404" in text or "not found" in lowered:
        return NotFoundError(text, cause=exc)
    if "429" in text or "rate limit" in lowered:
        return RateLimitedError(text, cause=exc)
    if "timeout" in lowered or "timed out" in lowered:
        return RequestTimeoutError(text, cause=exc)
    return NetworkError(text or type(exc).__name__, cause=exc)
