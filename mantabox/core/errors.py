from __future__ import annotations

from typing import Optional


class DriverError(Exception):
    error_type = "UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.path = path

    def annotate(self, operation: str, path: Optional[str]) -> "DriverError":
        if self.operation is None:
            self.operation = operation
        if self.path is None:
            self.path = path
        return self

    def __str__(self) -> str:
        message = super().__str__()
        details = []
        if self.operation:
            details.append(f"operation={self.operation}")
        if self.path:
            details.append(f"path={self.path}")
        if details:
            return f"{message} ({', '.join(details)})"
        return message


class ConfigError(DriverError):
    error_type = "CONFIG"


class PathRejectedError(DriverError):
    error_type = "PATH_REJECTED"


class BackendError(DriverError):
    error_type = "BACKEND"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message, operation=operation, path=path)
        self.code = code
        self.status_code = status_code


class NotFoundError(BackendError):
    error_type = "NOT_FOUND"


class TransientBackendError(BackendError):
    error_type = "RETRYABLE"


class PartialCompoundFailure(DriverError):
    """A move linked the destination but could not remove the source.

    Both names are live afterwards. ``entry`` describes the destination that
    now exists; the unlink failure is chained as ``__cause__``.
    """

    error_type = "PARTIAL_COMPOUND"

    def __init__(self, message: str, *, entry, source: str, **kwargs):
        super().__init__(message, **kwargs)
        self.entry = entry
        self.source = source


def classify_error(error: Exception) -> str:
    if hasattr(error, "error_type"):
        return getattr(error, "error_type")

    message = str(error).lower()

    if "not found" in message or "404" in message or "no such" in message:
        return "NOT_FOUND"

    if "timeout" in message or "timed out" in message:
        return "RETRYABLE"

    if "connection" in message or "network" in message:
        return "RETRYABLE"

    if "permission" in message or "forbidden" in message or "403" in message:
        return "BACKEND"

    if "traversal" in message:
        return "PATH_REJECTED"

    return "UNKNOWN"
