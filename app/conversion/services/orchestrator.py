"""
PipelineOrchestrator: Runs the proof conversion pipeline end to end.

Lifecycle:
    INITIALIZING -> BACKFILL_SCANNING -> WATCHING -> DRAINING -> STOPPED

Per job:
    Ledger accept -> Transcode -> Convert -> Write
A failure at any stage is logged with the filename, releases the ledger
entry and never affects other jobs.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

from loguru import logger

from app.conversion.services.dispatcher import ConversionDispatcher
from app.conversion.services.engine import get_conversion_engine
from app.conversion.services.job_ledger import JobLedger, ShutdownFlag
from app.conversion.services.output_writer import OutputWriter
from app.conversion.services.transcoder import FormatTranscoder
from app.conversion.services.watcher import IngestionWatcher
from proofbridge_core.artifacts.models import ArtifactPattern, Job, JobStatus, PipelineState
from proofbridge_core.config import Settings, settings
from proofbridge_core.runtime.errors import (
    DirectoryIOFailedError,
    ErrorCode,
    ServiceError,
)


class PipelineOrchestrator:
    """
    Coordinates watcher, ledger, transcoder, dispatcher and writer.

    Usage:
        orchestrator = get_pipeline_orchestrator()
        loop.add_signal_handler(signal.SIGTERM, orchestrator.request_shutdown)
        await orchestrator.run()
    """

    def __init__(
        self,
        input_dir: str,
        output_dir: str,
        pattern: ArtifactPattern,
        ledger: JobLedger,
        shutdown_flag: ShutdownFlag,
        watcher: IngestionWatcher,
        transcoder: FormatTranscoder,
        dispatcher: ConversionDispatcher,
        writer: OutputWriter,
    ):
        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.pattern = pattern
        self.ledger = ledger
        self.shutdown_flag = shutdown_flag
        self.watcher = watcher
        self.transcoder = transcoder
        self.dispatcher = dispatcher
        self.writer = writer

        self._state = PipelineState.INITIALIZING
        self._jobs: dict[str, Job] = {}
        self._tasks: set[asyncio.Task] = set()
        self._counts = {"accepted": 0, "written": 0, "failed": 0}

    @property
    def state(self) -> PipelineState:
        return self._state

    def snapshot(self) -> dict[str, Any]:
        """Diagnostic summary of the pipeline."""
        return {
            "state": self._state.value,
            "active_jobs": sorted(self._jobs),
            **self._counts,
        }

    # --- lifecycle ---------------------------------------------------------

    async def run(self, watch: bool = True) -> None:
        """
        Run until shutdown is requested, then drain.

        Args:
            watch: Keep watching for new files after the backlog. With False
                the pipeline processes the backlog once and stops.

        Raises:
            DirectoryIOFailedError: The input/output directories could not be
                created. Nothing has been processed in that case.
        """
        try:
            await self._initialize()
        except DirectoryIOFailedError:
            await self.dispatcher.terminate()
            self._state = PipelineState.STOPPED
            raise

        if watch:
            # Subscribe before listing; events queue up until the backlog is done
            self.watcher.start(asyncio.get_running_loop())

        await self._backfill()

        if watch and not self.shutdown_flag.is_set():
            self._state = PipelineState.WATCHING
            logger.info("Proof conversion service started")
            async for path in self.watcher.events():
                self.submit(path)

        await self._drain()

    def request_shutdown(self) -> None:
        """Begin draining. Repeated calls (e.g. a second signal) are no-ops."""
        if not self.shutdown_flag.set():
            logger.debug("Shutdown already in progress")
            return
        logger.info("Shutting down proof conversion service...")
        self._state = PipelineState.DRAINING
        self.watcher.interrupt()

    async def _initialize(self) -> None:
        self._state = PipelineState.INITIALIZING
        for directory in (self.input_dir, self.output_dir):
            try:
                await asyncio.to_thread(os.makedirs, directory, exist_ok=True)
            except OSError as e:
                raise DirectoryIOFailedError(str(directory), cause=e) from e
        logger.info(f"Directories created/verified: {self.input_dir}, {self.output_dir}")

    async def _backfill(self) -> None:
        self._state = PipelineState.BACKFILL_SCANNING
        logger.info("Processing existing proof files...")

        paths = await self.watcher.scan_backlog()
        logger.info(f"Found {len(paths)} existing proof file(s)")

        tasks = [task for task in (self.submit(path) for path in paths) if task is not None]
        if tasks:
            await asyncio.gather(*tasks)

        logger.info(
            f"Processed {len(paths)} existing file(s): "
            f"{sum(1 for t in tasks if t.result() is JobStatus.WRITTEN)} written"
        )

    async def _drain(self) -> None:
        self.shutdown_flag.set()
        self._state = PipelineState.DRAINING

        await self.watcher.stop()
        if self._tasks:
            logger.info(f"Draining {len(self._tasks)} in-flight job(s)")
            await asyncio.gather(*self._tasks)
        await self.dispatcher.terminate()

        self._state = PipelineState.STOPPED
        logger.info(f"Service shutdown complete: {self.snapshot()}")

    # --- jobs ----------------------------------------------------------------

    def submit(self, path: str) -> asyncio.Task | None:
        """
        Start a job for `path` unless it is invalid, a duplicate, or too late.

        Returns:
            The job task, or None when nothing was started.
        """
        filename = os.path.basename(path)
        try:
            reference = self.pattern.parse(filename)
        except ServiceError as e:
            self._counts["failed"] += 1
            logger.error(f"[{filename}] {e}: {e.message_debug}")
            return None

        if not self.ledger.try_accept(filename):
            return None

        job = Job(reference=reference, path=path)
        job.advance(JobStatus.ACCEPTED)
        self._jobs[filename] = job
        self._counts["accepted"] += 1

        task = asyncio.create_task(self._process(job), name=f"job:{filename}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(self, job: Job) -> JobStatus:
        filename = job.reference.filename
        logger.info(f"[{filename}] Processing proof file")
        try:
            job.advance(JobStatus.TRANSCODING)
            document = await self.transcoder.transcode(job.path)

            job.advance(JobStatus.CONVERTING)
            artifact = await self.dispatcher.convert(document, original_file=filename)

            output_path = await self.writer.write(job.reference, artifact)
            job.advance(JobStatus.WRITTEN)
        except ServiceError as e:
            self._fail(job, e)
        except Exception as e:
            logger.exception(f"[{filename}] Unexpected error: {e}")
            self._fail(job, ServiceError(ErrorCode.INTERNAL_ERROR, "Unexpected error", repr(e), cause=e))
        else:
            self._counts["written"] += 1
            logger.info(f"[{filename}] Successfully converted -> {output_path.name}")
        finally:
            self._jobs.pop(filename, None)

        return job.status

    def _fail(self, job: Job, error: ServiceError) -> None:
        filename = job.reference.filename
        stage = job.status.value
        job.fail(error.code)
        self._counts["failed"] += 1
        self.ledger.release(filename)

        detail = f" ({error.message_debug})" if error.message_debug else ""
        logger.bind(filename=filename, stage=stage, error=error.to_dict()).error(
            f"[{filename}] Failed while {stage} {error} [{error.debug_id}]{detail}"
        )


def get_pipeline_orchestrator(config: Settings = settings) -> PipelineOrchestrator:
    """
    Build an orchestrator wired from settings.

    Raises:
        ValueError: The conversion engine or pool size is misconfigured.
    """
    pattern = ArtifactPattern(config.ARTIFACT_DELIMITER, config.ARTIFACT_EXTENSION)
    shutdown_flag = ShutdownFlag()

    return PipelineOrchestrator(
        input_dir=config.SAVED_PROOFS_DIR,
        output_dir=config.CONVERTED_PROOFS_DIR,
        pattern=pattern,
        ledger=JobLedger(shutdown_flag),
        shutdown_flag=shutdown_flag,
        watcher=IngestionWatcher(config.SAVED_PROOFS_DIR, pattern),
        transcoder=FormatTranscoder(
            candidates=config.TRANSCODER_CANDIDATES,
            pattern=pattern,
            timeout=config.TRANSCODE_TIMEOUT_SECONDS,
        ),
        dispatcher=ConversionDispatcher(
            get_conversion_engine(config),
            max_workers=config.MAX_PROCESSES,
            timeout=config.CONVERSION_TIMEOUT_SECONDS,
        ),
        writer=OutputWriter(config.CONVERTED_PROOFS_DIR, config.OUTPUT_SUFFIX),
    )
