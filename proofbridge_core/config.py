"""
Unified configuration for the proofbridge pipeline service.

This module provides a single Settings class that consolidates all
environment variables used by the watcher, transcoder, dispatcher and
output writer. Invalid values fail at import time so the service never
starts half-configured.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the proof conversion service.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "proofbridge"

    # Directories
    SAVED_PROOFS_DIR: str = "/data/saved_proofs"
    CONVERTED_PROOFS_DIR: str = "/data/converted_proofs"

    # Conversion pool size (dispatcher slots and engine workers)
    MAX_PROCESSES: PositiveInt = 1

    # Artifact naming: {start}{delimiter}{end}.{extension}
    ARTIFACT_DELIMITER: str = "_"
    ARTIFACT_EXTENSION: str = "bin"
    OUTPUT_SUFFIX: str = "_converted.json"

    # Format transcoder, tried in order
    TRANSCODER_CANDIDATES: list[str] = [
        "./target/release/sp1-proof-to-json",
        "/usr/local/bin/sp1-proof-to-json",
        "./scripts/utils/target/release/sp1-proof-to-json",
    ]
    TRANSCODE_TIMEOUT_SECONDS: PositiveFloat = 300.0

    # Conversion engine (exactly one should be set)
    CONVERSION_ENGINE_CALLABLE: str = ""
    CONVERSION_ENGINE_COMMAND: str = ""
    CONVERSION_TIMEOUT_SECONDS: PositiveFloat = 3600.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
