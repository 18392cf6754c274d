"""
Standardized error model for the proof conversion pipeline.

Every failure a Job can hit is a ServiceError carrying a machine-readable
code, a message safe for logs, and optional debug detail. Per-job errors are
caught at the Job boundary by the orchestrator; none of them are retried
automatically, so all pipeline errors are terminal.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Standardized service error.

    ServiceError carries structured information about failures:
    - code: Machine-readable error code (e.g., "TRANSCODE_FAILED")
    - message_safe: Human-readable message safe for logs
    - message_debug: Detailed debug info (stderr, exit status, engine error)
    - retryable: Whether the operation can be retried
    - cause: The underlying exception, if any
    - debug_id: Unique ID for log correlation

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Safe message for logging.
        message_debug: Optional detailed message for debugging.
        retryable: Whether this error can be retried.
        cause: Optional underlying exception.
        debug_id: Short identifier for correlating log lines.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        """Return string representation."""
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        """Return detailed representation."""
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging.

        Returns:
            Dictionary with error details, including debug info when present.
        """
        data = {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
            "retryable": self.retryable,
        }
        if self.message_debug:
            data["debug"] = self.message_debug
        return data


class TerminalError(ServiceError):
    """Error that indicates the operation should not be retried.

    The pipeline uses this for every per-job failure: a failed Job only
    becomes eligible again when its file is rediscovered.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


class ErrorCode:
    """Standard error codes for pipeline failure scenarios."""

    INVALID_ARTIFACT_NAME = "INVALID_ARTIFACT_NAME"
    TRANSCODE_EXECUTABLE_UNAVAILABLE = "TRANSCODE_EXECUTABLE_UNAVAILABLE"
    TRANSCODE_FAILED = "TRANSCODE_FAILED"
    TRANSCODE_OUTPUT_INVALID = "TRANSCODE_OUTPUT_INVALID"
    CONVERSION_FAILED = "CONVERSION_FAILED"
    OUTPUT_PERSIST_FAILED = "OUTPUT_PERSIST_FAILED"
    DIRECTORY_IO_FAILED = "DIRECTORY_IO_FAILED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


class InvalidArtifactNameError(TerminalError):
    """Filename does not encode a valid `start{delim}end.{ext}` range."""

    def __init__(self, filename: str, message_debug: str | None = None):
        super().__init__(
            code=ErrorCode.INVALID_ARTIFACT_NAME,
            message_safe=f"Invalid artifact filename: {filename}",
            message_debug=message_debug,
        )
        self.filename = filename


class TranscodeExecutableUnavailableError(TerminalError):
    """No candidate location could launch the transcoding executable."""

    def __init__(
        self,
        candidates: list[str],
        cause: Exception | None = None,
    ):
        super().__init__(
            code=ErrorCode.TRANSCODE_EXECUTABLE_UNAVAILABLE,
            message_safe=f"Transcoding executable unavailable at {len(candidates)} candidate(s)",
            message_debug=f"candidates={candidates}; last error: {cause}",
            cause=cause,
        )
        self.candidates = list(candidates)


class TranscodeFailedError(TerminalError):
    """The transcoding executable ran but exited abnormally or timed out."""

    def __init__(
        self,
        message_safe: str,
        exit_code: int | None = None,
        stderr: str = "",
        cause: Exception | None = None,
    ):
        super().__init__(
            code=ErrorCode.TRANSCODE_FAILED,
            message_safe=message_safe,
            message_debug=f"exit_code={exit_code}; stderr={stderr.strip()[-2000:]}",
            cause=cause,
        )
        self.exit_code = exit_code
        self.stderr = stderr


class TranscodeOutputInvalidError(TerminalError):
    """The executable succeeded but its output is missing or malformed."""

    def __init__(self, message_safe: str, message_debug: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.TRANSCODE_OUTPUT_INVALID,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class ConversionFailedError(TerminalError):
    """The conversion engine raised, timed out, or the dispatcher is closed."""

    def __init__(self, message_safe: str, message_debug: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.CONVERSION_FAILED,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class OutputPersistFailedError(TerminalError):
    """The converted artifact could not be written to the output directory."""

    def __init__(self, message_safe: str, message_debug: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.OUTPUT_PERSIST_FAILED,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )


class DirectoryIOFailedError(TerminalError):
    """Listing or creating a pipeline directory failed."""

    def __init__(self, path: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.DIRECTORY_IO_FAILED,
            message_safe=f"Directory I/O failed: {path}",
            message_debug=str(cause) if cause else None,
            cause=cause,
        )
        self.path = path
