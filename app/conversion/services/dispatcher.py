"""
ConversionDispatcher: Bounded-concurrency front for the conversion engine.

At most `max_workers` conversions run at once; further callers wait for a
free slot. A failing conversion only fails its own caller.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from app.conversion.services.engine import ConversionEngine
from proofbridge_core.artifacts.models import ConvertedArtifact, IntermediateDocument
from proofbridge_core.config import settings
from proofbridge_core.runtime.errors import ConversionFailedError, ServiceError


class ConversionDispatcher:
    """
    Owns the conversion slots and the engine's lifetime.

    Usage:
        dispatcher = ConversionDispatcher(engine, max_workers=2)
        artifact = await dispatcher.convert(document, original_file="100_200.bin")
        await dispatcher.terminate()
    """

    def __init__(
        self,
        engine: ConversionEngine,
        max_workers: int | None = None,
        timeout: float | None = None,
    ):
        self.engine = engine
        self.max_workers = max_workers if max_workers is not None else settings.MAX_PROCESSES
        if self.max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        self.timeout = timeout if timeout is not None else settings.CONVERSION_TIMEOUT_SECONDS

        self._slots = asyncio.Semaphore(self.max_workers)
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._termination: asyncio.Future | None = None

    @property
    def in_flight(self) -> int:
        """Submitted conversions not yet finished, queued ones included."""
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    async def convert(self, document: IntermediateDocument, original_file: str) -> ConvertedArtifact:
        """
        Convert a document on the next free slot.

        Args:
            document: The transcoded intermediate document.
            original_file: Source artifact filename, kept as provenance.

        Returns:
            ConvertedArtifact: The engine output with provenance.

        Raises:
            ConversionFailedError: The dispatcher is terminated, the engine
                raised, or the conversion timed out.
        """
        if self._closed:
            raise ConversionFailedError("Conversion dispatcher is terminated")

        self._in_flight += 1
        self._idle.clear()
        try:
            async with self._slots:
                payload = await self._run_engine(document, original_file)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

        return ConvertedArtifact(original_file=original_file, payload=payload)

    async def _run_engine(self, document: IntermediateDocument, original_file: str):
        logger.info(f"[{original_file}] Converting proof")
        try:
            return await asyncio.wait_for(
                self.engine.convert(document.to_engine_input()), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ConversionFailedError(
                f"Conversion timed out after {self.timeout}s", cause=e
            ) from e
        except ServiceError:
            raise
        except Exception as e:
            raise ConversionFailedError(
                "Conversion engine failed", message_debug=repr(e), cause=e
            ) from e

    async def terminate(self) -> None:
        """
        Stop accepting work, wait for in-flight conversions, release the engine.

        Safe to call more than once; later calls wait on the first.
        """
        if self._termination is None:
            self._closed = True
            self._termination = asyncio.ensure_future(self._shutdown())
        await self._termination

    async def _shutdown(self) -> None:
        if self._in_flight:
            logger.info(f"Waiting for {self._in_flight} in-flight conversion(s)")
        await self._idle.wait()
        await self.engine.terminate()
        logger.info("Conversion dispatcher terminated")
