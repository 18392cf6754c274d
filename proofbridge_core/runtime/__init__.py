"""
Service runtime layer for proofbridge.

This package provides the shared error model used by every pipeline stage:
- ServiceError / TerminalError: Standardized errors with codes
- One TerminalError subclass per pipeline failure kind
"""

from .errors import (
    ConversionFailedError,
    DirectoryIOFailedError,
    ErrorCode,
    InvalidArtifactNameError,
    OutputPersistFailedError,
    ServiceError,
    TerminalError,
    TranscodeExecutableUnavailableError,
    TranscodeFailedError,
    TranscodeOutputInvalidError,
)

__all__ = [
    "ServiceError",
    "TerminalError",
    "ErrorCode",
    "InvalidArtifactNameError",
    "TranscodeExecutableUnavailableError",
    "TranscodeFailedError",
    "TranscodeOutputInvalidError",
    "ConversionFailedError",
    "OutputPersistFailedError",
    "DirectoryIOFailedError",
]
