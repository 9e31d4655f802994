"""Error types raised by the framework."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Kinds of framework errors."""

    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DI_SERVICE_NOT_FOUND = "DI_SERVICE_NOT_FOUND"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    INVALID_FACTORY = "INVALID_FACTORY"
    CONTEXT_REQUIRED = "CONTEXT_REQUIRED"

    def __str__(self) -> str:
        return self.value


class SuperGinError(Exception):
    """An error carrying an :class:`ErrorCode` and an optional cause."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        super().__init__(str(self))
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.code.value}] {self.message}: {self.cause}"
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code.value!r}, "
            f"message={self.message!r}, cause={self.cause!r})"
        )


def is_error_code(err: BaseException | None, code: ErrorCode) -> bool:
    """Return True if ``err`` is a :class:`SuperGinError` with ``code``."""
    return isinstance(err, SuperGinError) and err.code == code