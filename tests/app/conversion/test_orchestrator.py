"""
Tests for PipelineOrchestrator.

These run the real watcher, ledger, transcoder, dispatcher and writer
against temporary directories, with a generated transcoder executable, a
fake engine and a fake observer:
1. Backlog files are converted end to end
2. Duplicates and invalid names never start a second job
3. Failures release the ledger and do not affect other jobs
4. Shutdown drains in-flight work before exiting
"""

import asyncio
import json
from unittest.mock import patch

import pytest
from loguru import logger

from app.conversion.services.dispatcher import ConversionDispatcher
from app.conversion.services.job_ledger import JobLedger, ShutdownFlag
from app.conversion.services.orchestrator import PipelineOrchestrator, get_pipeline_orchestrator
from app.conversion.services.output_writer import OutputWriter
from app.conversion.services.transcoder import FormatTranscoder
from app.conversion.services.watcher import IngestionWatcher
from proofbridge_core.artifacts.models import JobStatus, PipelineState
from proofbridge_core.config import Settings
from proofbridge_core.runtime.errors import DirectoryIOFailedError, ErrorCode
from tests.app.conversion.fakes import FakeEngine, FakeObserver, wait_until


def build(dirs, pattern, candidates, engine, max_workers=1, observer=None):
    shutdown_flag = ShutdownFlag()
    observer = observer or FakeObserver()
    return PipelineOrchestrator(
        input_dir=str(dirs["saved"]),
        output_dir=str(dirs["converted"]),
        pattern=pattern,
        ledger=JobLedger(shutdown_flag),
        shutdown_flag=shutdown_flag,
        watcher=IngestionWatcher(str(dirs["saved"]), pattern, observer_factory=lambda: observer),
        transcoder=FormatTranscoder(
            candidates=candidates,
            pattern=pattern,
            timeout=10,
            scratch_dir=str(dirs["scratch"]),
        ),
        dispatcher=ConversionDispatcher(engine, max_workers=max_workers, timeout=10),
        writer=OutputWriter(str(dirs["converted"]), suffix=".result"),
    )


def outputs(dirs):
    return sorted(p.name for p in dirs["converted"].iterdir())


class TestBacklog:
    """Tests for the startup backlog drain."""

    @pytest.mark.asyncio
    async def test_single_file_end_to_end(self, dirs, pattern, transcoder_ok, fake_engine):
        """100-200.proof produces exactly one 100-200.result with provenance."""
        source = dirs["saved"] / "100-200.proof"
        source.write_bytes(b"\xde\xad\xbe\xef")
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        await orchestrator.run(watch=False)

        assert outputs(dirs) == ["100-200.result"]
        content = json.loads((dirs["converted"] / "100-200.result").read_text())
        assert content["originalFile"] == "100-200.proof"
        assert content["convertedProof"] == {"mina_proof": "deadbeef"[::-1], "blocks": 200}
        assert orchestrator.state == PipelineState.STOPPED
        assert fake_engine.terminated is True

    @pytest.mark.asyncio
    async def test_creates_missing_directories(self, tmp_path, pattern, transcoder_ok, fake_engine):
        """Input and output directories are created on startup."""
        dirs = {
            "saved": tmp_path / "in" / "saved",
            "converted": tmp_path / "out" / "converted",
            "scratch": tmp_path,
        }
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        await orchestrator.run(watch=False)

        assert dirs["saved"].is_dir()
        assert dirs["converted"].is_dir()

    @pytest.mark.asyncio
    async def test_many_files_bounded_by_pool(self, dirs, pattern, transcoder_ok):
        """Every backlog file is converted, never more at once than the pool allows."""
        for start in range(0, 50, 10):
            (dirs["saved"] / f"{start}-{start + 9}.proof").write_bytes(bytes([start]))
        engine = FakeEngine()
        orchestrator = build(dirs, pattern, [transcoder_ok], engine, max_workers=2)

        await orchestrator.run(watch=False)

        assert len(outputs(dirs)) == 5
        assert engine.max_active <= 2
        assert orchestrator.snapshot()["written"] == 5

    @pytest.mark.asyncio
    async def test_rerun_output_identical_except_timestamp(self, dirs, pattern, transcoder_ok):
        """Re-processing the same input yields the same output content."""
        (dirs["saved"] / "100-200.proof").write_bytes(b"same-bytes")

        await build(dirs, pattern, [transcoder_ok], FakeEngine()).run(watch=False)
        first = json.loads((dirs["converted"] / "100-200.result").read_text())
        await build(dirs, pattern, [transcoder_ok], FakeEngine()).run(watch=False)
        second = json.loads((dirs["converted"] / "100-200.result").read_text())

        first.pop("timestamp")
        second.pop("timestamp")
        assert first == second

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_jobs(self, dirs, pattern, transcoder_ok):
        """One engine failure leaves the other files converted."""
        (dirs["saved"] / "1-2.proof").write_bytes(b"a")
        (dirs["saved"] / "3-4.proof").write_bytes(b"b")
        engine = FakeEngine(fail_for={1})
        orchestrator = build(dirs, pattern, [transcoder_ok], engine)

        await orchestrator.run(watch=False)

        assert outputs(dirs) == ["3-4.result"]
        assert "1-2.proof" not in orchestrator.ledger
        assert "3-4.proof" in orchestrator.ledger
        assert orchestrator.snapshot()["failed"] == 1

    @pytest.mark.asyncio
    async def test_executable_unavailable_releases_ledger(
        self, dirs, pattern, missing_candidates, fake_engine
    ):
        """With no transcoder anywhere the job fails and its entry is released."""
        (dirs["saved"] / "100-200.proof").write_bytes(b"x")
        orchestrator = build(dirs, pattern, missing_candidates, fake_engine)

        await orchestrator.run(watch=False)

        assert outputs(dirs) == []
        assert "100-200.proof" not in orchestrator.ledger
        assert fake_engine.calls == []

    @pytest.mark.asyncio
    async def test_failure_log_carries_structured_error(
        self, dirs, pattern, missing_candidates, fake_engine
    ):
        """The job failure record exposes the error fields for JSON logging."""
        (dirs["saved"] / "100-200.proof").write_bytes(b"x")
        orchestrator = build(dirs, pattern, missing_candidates, fake_engine)
        records = []
        sink_id = logger.add(lambda message: records.append(message.record), level="ERROR")

        try:
            await orchestrator.run(watch=False)
        finally:
            logger.remove(sink_id)

        failures = [r["extra"] for r in records if "error" in r["extra"]]
        assert len(failures) == 1
        assert failures[0]["filename"] == "100-200.proof"
        assert failures[0]["stage"] == "transcoding"
        assert failures[0]["error"]["code"] == ErrorCode.TRANSCODE_EXECUTABLE_UNAVAILABLE
        assert failures[0]["error"]["retryable"] is False

    @pytest.mark.asyncio
    async def test_invalid_name_has_no_side_effects(self, dirs, pattern, transcoder_ok, fake_engine):
        """A proof file with a bad range is rejected before any subprocess."""
        (dirs["saved"] / "latest.proof").write_bytes(b"x")
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        with patch("app.conversion.services.transcoder.run_process") as mock_run:
            await orchestrator.run(watch=False)

        mock_run.assert_not_called()
        assert outputs(dirs) == []
        assert list(dirs["scratch"].iterdir()) == []
        assert len(orchestrator.ledger) == 0
        assert orchestrator.snapshot()["failed"] == 1


class TestSubmit:
    """Tests for the job acceptance gate."""

    @pytest.mark.asyncio
    async def test_duplicate_submission_is_noop(self, dirs, pattern, transcoder_ok, fake_engine):
        """Two submissions of the same path run exactly one job."""
        path = dirs["saved"] / "1-2.proof"
        path.write_bytes(b"dup")
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        first = orchestrator.submit(str(path))
        second = orchestrator.submit(str(path))

        assert first is not None
        assert second is None
        assert await first is JobStatus.WRITTEN
        assert len(fake_engine.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_file_can_be_resubmitted(self, dirs, pattern, transcoder_ok):
        """After a failure, rediscovering the file starts a new job."""
        path = dirs["saved"] / "1-2.proof"
        path.write_bytes(b"retry")
        engine = FakeEngine(fail_for={1})
        orchestrator = build(dirs, pattern, [transcoder_ok], engine)

        assert await orchestrator.submit(str(path)) is JobStatus.FAILED
        engine.fail_for.clear()
        assert await orchestrator.submit(str(path)) is JobStatus.WRITTEN

    @pytest.mark.asyncio
    async def test_no_accept_after_shutdown(self, dirs, pattern, transcoder_ok, fake_engine):
        """Once shutdown is requested nothing new is started."""
        path = dirs["saved"] / "1-2.proof"
        path.write_bytes(b"late")
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        orchestrator.request_shutdown()

        assert orchestrator.submit(str(path)) is None
        assert orchestrator.state == PipelineState.DRAINING


class TestWatching:
    """Tests for the live watch phase and shutdown."""

    @pytest.mark.asyncio
    async def test_duplicate_live_events_run_one_job(self, dirs, pattern, transcoder_ok, fake_engine):
        """Two create events for 1-2.proof in quick succession convert it once."""
        observer = FakeObserver()
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine, observer=observer)
        runner = asyncio.create_task(orchestrator.run())
        await wait_until(lambda: orchestrator.state == PipelineState.WATCHING)

        path = dirs["saved"] / "1-2.proof"
        path.write_bytes(b"live")
        orchestrator.watcher.notify(str(path))
        orchestrator.watcher.notify(str(path))
        await wait_until(lambda: outputs(dirs) == ["1-2.result"])

        orchestrator.request_shutdown()
        await asyncio.wait_for(runner, timeout=10)

        assert len(fake_engine.calls) == 1
        assert observer.stopped is True
        assert orchestrator.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_events_during_backlog_wait_for_backlog(self, dirs, pattern, transcoder_ok):
        """Live events buffered during the backlog are processed afterwards."""
        (dirs["saved"] / "1-2.proof").write_bytes(b"old")
        gate = asyncio.Event()
        engine = FakeEngine(gate=gate)
        orchestrator = build(dirs, pattern, [transcoder_ok], engine)
        runner = asyncio.create_task(orchestrator.run())
        await wait_until(lambda: engine.active == 1)

        (dirs["saved"] / "3-4.proof").write_bytes(b"new")
        orchestrator.watcher.notify(str(dirs["saved"] / "3-4.proof"))
        await asyncio.sleep(0.05)
        assert orchestrator.state == PipelineState.BACKFILL_SCANNING
        assert len(engine.calls) == 1

        gate.set()
        await wait_until(lambda: outputs(dirs) == ["1-2.result", "3-4.result"])
        orchestrator.request_shutdown()
        await asyncio.wait_for(runner, timeout=10)

        assert [c["metadata"]["startBlock"] for c in engine.calls] == [1, 3]

    @pytest.mark.asyncio
    async def test_shutdown_drains_in_flight_conversion(self, dirs, pattern, transcoder_ok):
        """A conversion occupying a slot at shutdown still writes its output."""
        gate = asyncio.Event()
        engine = FakeEngine(gate=gate)
        orchestrator = build(dirs, pattern, [transcoder_ok], engine)
        runner = asyncio.create_task(orchestrator.run())
        await wait_until(lambda: orchestrator.state == PipelineState.WATCHING)

        path = dirs["saved"] / "5-6.proof"
        path.write_bytes(b"slow")
        orchestrator.watcher.notify(str(path))
        await wait_until(lambda: engine.active == 1)

        orchestrator.request_shutdown()
        orchestrator.request_shutdown()
        await asyncio.sleep(0.05)
        assert not runner.done()
        assert engine.terminated is False

        gate.set()
        await asyncio.wait_for(runner, timeout=10)

        assert outputs(dirs) == ["5-6.result"]
        assert engine.terminated is True

    @pytest.mark.asyncio
    async def test_shutdown_during_backlog_skips_watching(self, dirs, pattern, transcoder_ok):
        """A signal during the backlog drains it and never enters WATCHING."""
        (dirs["saved"] / "1-2.proof").write_bytes(b"x")
        gate = asyncio.Event()
        engine = FakeEngine(gate=gate)
        orchestrator = build(dirs, pattern, [transcoder_ok], engine)
        runner = asyncio.create_task(orchestrator.run())
        await wait_until(lambda: engine.active == 1)

        orchestrator.request_shutdown()
        gate.set()
        await asyncio.wait_for(runner, timeout=10)

        assert outputs(dirs) == ["1-2.result"]
        assert orchestrator.state == PipelineState.STOPPED


class TestStartupFailure:
    """Tests for fatal startup errors."""

    @pytest.mark.asyncio
    async def test_directory_creation_failure_is_fatal(self, tmp_path, pattern, transcoder_ok, fake_engine):
        """An uncreatable directory raises DirectoryIOFailedError and releases the engine."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        dirs = {"saved": blocker / "saved", "converted": tmp_path / "out", "scratch": tmp_path}
        orchestrator = build(dirs, pattern, [transcoder_ok], fake_engine)

        with pytest.raises(DirectoryIOFailedError):
            await orchestrator.run()

        assert fake_engine.terminated is True
        assert orchestrator.state == PipelineState.STOPPED


class TestFactory:
    """Tests for get_pipeline_orchestrator."""

    def test_wires_components_from_settings(self, dirs):
        config = Settings(
            _env_file=None,
            SAVED_PROOFS_DIR=str(dirs["saved"]),
            CONVERTED_PROOFS_DIR=str(dirs["converted"]),
            CONVERSION_ENGINE_COMMAND="proof-conversion",
            MAX_PROCESSES=4,
            ARTIFACT_DELIMITER="-",
            ARTIFACT_EXTENSION="proof",
            OUTPUT_SUFFIX=".result",
        )

        orchestrator = get_pipeline_orchestrator(config)

        assert orchestrator.dispatcher.max_workers == 4
        assert orchestrator.writer.suffix == ".result"
        assert orchestrator.pattern.parse("1-2.proof").end_block == 2
        assert orchestrator.state == PipelineState.INITIALIZING

    def test_missing_engine_raises(self, dirs):
        config = Settings(_env_file=None, SAVED_PROOFS_DIR=str(dirs["saved"]))

        with pytest.raises(ValueError):
            get_pipeline_orchestrator(config)
