"""Structured errors surfaced by chain lifecycle operations.

Every public operation raises :class:`ChainError` rather than leaking provider
or filesystem exceptions. The error carries a numeric :class:`ErrorKind`, the
underlying cause (when there is one) and an optional remediation hint that the
CLI renders beneath the message.
"""
from __future__ import annotations

from enum import IntEnum

from .exit_codes import ExitCode


class ErrorKind(IntEnum):
    """Numeric error classes shared by every chain operation."""

    NOT_FOUND = 1
    VALIDATION = 2
    DEPENDENCY = 3
    RUNTIME = 4
    SETUP = 5
    EXEC = 6
    TIMEOUT = 7

    @property
    def exit_code(self) -> ExitCode:
        """Return the CLI exit code associated with this error class."""
        if self in (ErrorKind.NOT_FOUND, ErrorKind.VALIDATION):
            return ExitCode.VALIDATION
        if self in (ErrorKind.DEPENDENCY, ErrorKind.TIMEOUT):
            return ExitCode.ENVIRONMENT
        return ExitCode.PROVIDER


class ChainError(RuntimeError):
    """Raised when a chain operation fails."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        cause: BaseException | None = None,
        hint: str = "",
    ) -> None:
        """Record the error class, message, cause and remediation hint."""
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.hint = hint

    @property
    def exit_code(self) -> ExitCode:
        """Return the CLI exit code for this error."""
        return self.kind.exit_code

    def render(self) -> str:
        """Return a human readable rendering including cause and hint."""
        lines = [self.message]
        if self.cause is not None and str(self.cause) and str(self.cause) not in self.message:
            lines.append(f"cause: {self.cause}")
        if self.hint:
            lines.append(f"hint: {self.hint}")
        return "\n".join(lines)

    def __str__(self) -> str:
        """Return the message followed by the cause, when present."""
        if self.cause is not None and str(self.cause) and str(self.cause) not in self.message:
            return f"{self.message}: {self.cause}"
        return self.message

    @classmethod
    def combine(cls, original: BaseException, rollback_error: BaseException) -> ChainError:
        """Merge a provisioning failure with the failure of its rollback."""
        message = (
            f"error setting up chain ({original}); "
            f"additionally failed to clean up ({rollback_error})"
        )
        return cls(
            ErrorKind.SETUP,
            message,
            cause=original,
            hint="use [docker rm -vf <containerID>] carefully to remove leftovers",
        )


__all__ = ["ChainError", "ErrorKind"]
