"""Error taxonomy and the Result type returned across component boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(StrEnum):
    UNKNOWN = "UNKNOWN"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    API_ERROR = "API_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    FILE_WRITE_ERROR = "FILE_WRITE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    SEARCH_FAILED = "SEARCH_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"


class AppError(Exception):
    """Base application error.

    Carries a machine-readable ``code``, an HTTP-like ``status_code`` and a
    free-form ``details`` mapping with enough context to render a message.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        *,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": str(self.code),
            "status_code": self.status_code,
            "details": self.details,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }

    def user_message(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!s}, message={self.message!r})"


class ValidationError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.VALIDATION, 400, details)


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: str | None = None) -> None:
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, ErrorCode.NOT_FOUND, 404, {"resource": resource, "identifier": identifier})


class NetworkError(AppError):
    def __init__(self, message: str = "Network request failed", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.NETWORK_ERROR, 503, details, retryable=True)


class RequestTimeoutError(AppError):
    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds:g}s",
            ErrorCode.TIMEOUT,
            408,
            {"operation": operation, "timeout_seconds": timeout_seconds},
            retryable=True,
        )


class ApiError(AppError):
    def __init__(self, message: str, status_code: int = 500, details: dict[str, Any] | None = None) -> None:
        retryable = status_code == 429 or status_code >= 500
        super().__init__(message, ErrorCode.API_ERROR, status_code, details, retryable=retryable)


class StorageError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.STORAGE_ERROR, 500, details)


class FileSystemError(AppError):
    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FILE_READ_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, 500, details)


class ConfigurationError(AppError):
    """Invalid static configuration; fatal at startup, so it is raised rather than returned."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.CONFIG_ERROR, 500, details)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure value returned by every fallible operation."""

    data: T | None = None
    error: AppError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the data or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.data  # type: ignore[return-value]


def success(data: T = None) -> Result[T]:  # type: ignore[assignment]
    return Result(data=data)


def failure(error: AppError) -> Result[Any]:
    return Result(error=error)


def normalize_error(exc: BaseException, message: str | None = None) -> AppError:
    """Wrap an arbitrary exception into an :class:`AppError`."""
    if isinstance(exc, AppError):
        return exc
    return AppError(
        message or str(exc) or type(exc).__name__,
        ErrorCode.UNKNOWN,
        500,
        {"original_error": type(exc).__name__},
    )
