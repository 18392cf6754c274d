"""
FormatTranscoder: Turns a raw proof blob into an IntermediateDocument.

The heavy lifting is done by an external executable (sp1-proof-to-json)
invoked as `<exe> --input <blob> --output <json>`. This service owns the
scratch file the executable writes to and removes it whatever happens.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Sequence

import aiofiles
import aiofiles.os
from loguru import logger
from pydantic import ValidationError

from app.conversion.services.process import ProcessResult, run_process
from app.conversion.services.resolver import CandidateResolver
from proofbridge_core.artifacts.models import ArtifactPattern, ArtifactReference, IntermediateDocument
from proofbridge_core.config import settings
from proofbridge_core.runtime.errors import (
    TranscodeFailedError,
    TranscodeOutputInvalidError,
)


class FormatTranscoder:
    """
    Invokes the format-transcoding executable on one source artifact.

    Usage:
        transcoder = FormatTranscoder()
        document = await transcoder.transcode("/data/saved_proofs/100_200.bin")
    """

    def __init__(
        self,
        candidates: Sequence[str] | None = None,
        pattern: ArtifactPattern | None = None,
        timeout: float | None = None,
        scratch_dir: str | None = None,
    ):
        """
        Initialize the transcoder.

        Args:
            candidates: Executable locations in priority order.
            pattern: Artifact filename pattern used for validation.
            timeout: Seconds allowed per invocation.
            scratch_dir: Where scratch output files are created (system temp if None).
        """
        self.resolver = CandidateResolver(candidates or settings.TRANSCODER_CANDIDATES)
        self.pattern = pattern or ArtifactPattern(settings.ARTIFACT_DELIMITER, settings.ARTIFACT_EXTENSION)
        self.timeout = timeout if timeout is not None else settings.TRANSCODE_TIMEOUT_SECONDS
        self.scratch_dir = scratch_dir

    async def transcode(self, source_path: str) -> IntermediateDocument:
        """
        Transcode a raw proof blob.

        Args:
            source_path: Absolute path to the blob.

        Returns:
            IntermediateDocument: The parsed executable output, with the block
            range and source size filled into its metadata.

        Raises:
            InvalidArtifactNameError: The filename is not a valid range.
            TranscodeExecutableUnavailableError: No candidate could be launched.
            TranscodeFailedError: The executable exited non-zero or timed out.
            TranscodeOutputInvalidError: The output is missing or malformed.
        """
        reference = self.pattern.parse(Path(source_path).name)
        size = await self._source_size(source_path)
        logger.debug(f"[{reference.filename}] Proof file size: {size} bytes")
        logger.debug(f"[{reference.filename}] Block range: {reference.start_block} - {reference.end_block}")

        fd, scratch_path = tempfile.mkstemp(
            prefix=f"{reference.stem}-", suffix=".json", dir=self.scratch_dir
        )
        os.close(fd)

        try:
            result = await self.resolver.run(
                lambda executable: self._invoke(executable, source_path, scratch_path)
            )
            if result.returncode != 0:
                raise TranscodeFailedError(
                    f"Transcoder exited with status {result.returncode}",
                    exit_code=result.returncode,
                    stderr=result.stderr_text,
                )
            document = await self._read_document(scratch_path)
        finally:
            await self._cleanup(scratch_path)

        return self._with_source_metadata(document, reference, size)

    async def _invoke(self, executable: str, source_path: str, output_path: str) -> ProcessResult:
        argv = [executable, "--input", source_path, "--output", output_path]
        try:
            return await run_process(argv, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TranscodeFailedError(
                f"Transcoder timed out after {self.timeout}s", cause=e
            ) from e

    async def _read_document(self, path: str) -> IntermediateDocument:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise TranscodeOutputInvalidError(
                "Transcoder output could not be read", message_debug=str(e), cause=e
            ) from e

        if not raw.strip():
            raise TranscodeOutputInvalidError("Transcoder produced no output")

        try:
            return IntermediateDocument.model_validate_json(raw)
        except ValidationError as e:
            raise TranscodeOutputInvalidError(
                "Transcoder output is not a valid intermediate document",
                message_debug=str(e),
                cause=e,
            ) from e

    @staticmethod
    async def _source_size(source_path: str) -> int | None:
        try:
            return await aiofiles.os.path.getsize(source_path)
        except OSError:
            return None

    @staticmethod
    def _with_source_metadata(
        document: IntermediateDocument, reference: ArtifactReference, size: int | None
    ) -> IntermediateDocument:
        metadata = dict(document.metadata)
        metadata.setdefault("startBlock", reference.start_block)
        metadata.setdefault("endBlock", reference.end_block)
        if size is not None:
            metadata.setdefault("originalSize", size)
        return document.model_copy(update={"metadata": metadata})

    async def _cleanup(self, path: str) -> None:
        """Best-effort removal of the scratch file."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove scratch file {path}: {e}")
