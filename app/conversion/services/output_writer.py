"""
OutputWriter: Atomic persistence of converted proofs.

Each output is written under a hidden temporary name in the output
directory, flushed to disk, then renamed into place, so readers never see
a partial `*_converted.json`.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger

from proofbridge_core.artifacts.models import ArtifactReference, ConvertedArtifact, OutputRecord
from proofbridge_core.config import settings
from proofbridge_core.runtime.errors import OutputPersistFailedError


class OutputWriter:
    """
    Writes one output document per converted artifact.

    Usage:
        writer = OutputWriter(output_dir="/data/converted_proofs")
        path = await writer.write(reference, artifact)
    """

    def __init__(self, output_dir: str | None = None, suffix: str | None = None):
        """
        Initialize the writer.

        Args:
            output_dir: Destination directory (created by the orchestrator).
            suffix: Replaces the source extension, e.g. "_converted.json".
        """
        self.output_dir = Path(output_dir or settings.CONVERTED_PROOFS_DIR)
        self.suffix = suffix or settings.OUTPUT_SUFFIX

    def output_path(self, reference: ArtifactReference) -> Path:
        return self.output_dir / reference.output_filename(self.suffix)

    async def write(self, reference: ArtifactReference, artifact: ConvertedArtifact) -> Path:
        """
        Persist a converted artifact with its provenance.

        Args:
            reference: The source artifact.
            artifact: The engine output.

        Returns:
            Path: The final output path.

        Raises:
            OutputPersistFailedError: Serialization or any filesystem step failed.
        """
        final_path = self.output_path(reference)
        temp_path = self.output_dir / f".{final_path.name}.{uuid.uuid4().hex[:8]}.tmp"

        try:
            content = OutputRecord.build(reference.filename, artifact).to_json()
        except (TypeError, ValueError) as e:
            raise OutputPersistFailedError(
                f"Converted proof for {reference.filename} is not serializable",
                message_debug=str(e),
                cause=e,
            ) from e

        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(temp_path, final_path)
        except OSError as e:
            await self._discard(temp_path)
            raise OutputPersistFailedError(
                f"Could not write {final_path.name}",
                message_debug=str(e),
                cause=e,
            ) from e

        logger.debug(f"Wrote {final_path} ({len(content)} bytes)")
        return final_path

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary output {path}: {e}")
