"""
Error taxonomy for the FinOps pipeline.

The core raises only two kinds of errors:

- InputValidationError: a top-level input envelope is malformed. Per-event
  problems are never raised; they are accumulated and returned instead.
- SchemaError: an internally constructed ledger or report failed its own
  shape check. This is a programming bug and aborts the operation.

The remaining codes belong to the I/O boundary (CLI file handling) and to the
retry metadata advertised to the job runner.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes shared with the job runner."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    IO_ERROR = "IO_ERROR"
    SECURITY_ERROR = "SECURITY_ERROR"
    TIMEOUT = "TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ExitCode(int, Enum):
    """Process exit codes for the command-line entry point."""

    SUCCESS = 0
    VALIDATION = 2
    DEPENDENCY = 3
    BUG = 4


NON_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.SCHEMA_ERROR,
        ErrorCode.SECURITY_ERROR,
        ErrorCode.NOT_FOUND,
    }
)

_EXIT_CODES = {
    ErrorCode.VALIDATION_ERROR: ExitCode.VALIDATION,
    ErrorCode.SCHEMA_ERROR: ExitCode.VALIDATION,
    ErrorCode.SECURITY_ERROR: ExitCode.VALIDATION,
    ErrorCode.NOT_FOUND: ExitCode.VALIDATION,
    ErrorCode.IO_ERROR: ExitCode.DEPENDENCY,
    ErrorCode.TIMEOUT: ExitCode.DEPENDENCY,
    ErrorCode.UPSTREAM_ERROR: ExitCode.DEPENDENCY,
    ErrorCode.INTERNAL_ERROR: ExitCode.BUG,
}


def is_retryable(code: ErrorCode) -> bool:
    """Whether the runner may retry an operation that failed with ``code``."""
    return code not in NON_RETRYABLE_CODES


def exit_code_for(code: ErrorCode) -> ExitCode:
    """Map an error code to the process exit code."""
    return _EXIT_CODES.get(code, ExitCode.BUG)


class FinOpsError(Exception):
    """Base exception for every error raised by the package."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    @property
    def retryable(self) -> bool:
        return is_retryable(self.code)

    @property
    def exit_code(self) -> ExitCode:
        return exit_code_for(self.code)

    def to_error_envelope(self) -> dict[str, Any]:
        """Render the error as a JSON-friendly envelope."""
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class InputValidationError(FinOpsError):
    """Raised when a top-level input envelope does not match its contract."""

    code = ErrorCode.VALIDATION_ERROR


class SchemaError(FinOpsError):
    """Raised when an internally built ledger or report violates its schema."""

    code = ErrorCode.SCHEMA_ERROR


class BoundaryIOError(FinOpsError):
    """Raised when reading or writing an artifact at the I/O boundary fails."""

    code = ErrorCode.IO_ERROR


class SecurityError(FinOpsError):
    """Raised when an input violates a path or size guard."""

    code = ErrorCode.SECURITY_ERROR


class NotFoundError(FinOpsError):
    """Raised when a requested input file does not exist."""

    code = ErrorCode.NOT_FOUND
