"""
Conversion engine adapters.

The conversion engine is the external collaborator that turns an
intermediate SP1 document into the target proof system's encoding. It owns
its own worker pool and must release it on terminate(). Two adapters are
provided:
- ProcessPoolConversionEngine: runs an importable `module:function` in a
  process pool sized by MAX_PROCESSES
- CommandConversionEngine: runs an external command per conversion
"""

from __future__ import annotations

import asyncio
import functools
import importlib
import json
import shlex
import tempfile
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence, runtime_checkable

import aiofiles
from loguru import logger

from app.conversion.services.process import run_process
from proofbridge_core.config import Settings, settings
from proofbridge_core.runtime.errors import ConversionFailedError


@runtime_checkable
class ConversionEngine(Protocol):
    """Interface for proof-system conversion backends."""

    async def convert(self, document: dict[str, Any]) -> Any:
        """
        Convert one intermediate document.

        Args:
            document: JSON-compatible intermediate document.

        Returns:
            JSON-serializable converted proof.
        """
        ...

    async def terminate(self) -> None:
        """Release pooled resources. Called once, after in-flight work is done."""
        ...


def load_callable(path: str) -> Callable[[dict[str, Any]], Any]:
    """Import `package.module:function`."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:function', got {path!r}")
    func = getattr(importlib.import_module(module_name), attr, None)
    if not callable(func):
        raise ValueError(f"{path!r} is not callable")
    return func


@functools.lru_cache(maxsize=None)
def _cached_callable(path: str) -> Callable[[dict[str, Any]], Any]:
    return load_callable(path)


def _run_in_worker(path: str, document: dict[str, Any]) -> Any:
    # Executed inside the pool process; the import is cached per worker.
    return _cached_callable(path)(document)


class ProcessPoolConversionEngine:
    """
    Runs a Python conversion function in a pool of worker processes.

    Each slot owns a single-process executor. A worker that dies, or whose
    conversion is cancelled (e.g. by the dispatcher timeout), is killed and
    replaced without touching conversions running in other slots.

    Usage:
        engine = ProcessPoolConversionEngine("mypkg.convert:sp1_to_plonk", max_workers=2)
        converted = await engine.convert(document)
        await engine.terminate()
    """

    def __init__(self, callable_path: str, max_workers: int = 1):
        # Fail at startup rather than on the first job
        load_callable(callable_path)
        self.callable_path = callable_path
        self.max_workers = max_workers
        self._workers = [ProcessPoolExecutor(max_workers=1) for _ in range(max_workers)]
        self._idle: asyncio.Queue[ProcessPoolExecutor] = asyncio.Queue()
        for worker in self._workers:
            self._idle.put_nowait(worker)
        logger.info(f"Process pool engine ready: {callable_path} x{max_workers}")

    async def convert(self, document: dict[str, Any]) -> Any:
        worker = await self._idle.get()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                worker, _run_in_worker, self.callable_path, document
            )
        except BrokenProcessPool as e:
            worker = self._replace(worker)
            raise ConversionFailedError(
                "Conversion worker process died", message_debug=repr(e), cause=e
            ) from e
        except asyncio.CancelledError:
            worker = self._replace(worker)
            raise
        finally:
            self._idle.put_nowait(worker)

    def _replace(self, worker: ProcessPoolExecutor) -> ProcessPoolExecutor:
        """Kill a worker's process and swap in a fresh executor."""
        # No public kill before Python 3.14
        for process in list((getattr(worker, "_processes", None) or {}).values()):
            if process.is_alive():
                process.kill()
        worker.shutdown(wait=False, cancel_futures=True)

        fresh = ProcessPoolExecutor(max_workers=1)
        self._workers[self._workers.index(worker)] = fresh
        logger.warning("Replaced conversion worker process")
        return fresh

    async def terminate(self) -> None:
        for worker in self._workers:
            await asyncio.to_thread(worker.shutdown, wait=True)
        logger.info("Process pool engine terminated")


class CommandConversionEngine:
    """
    Runs an external converter as `<command> --input <doc.json> --output <out.json>`.

    Each conversion gets its own scratch directory, removed afterwards.
    """

    def __init__(self, command: str | Sequence[str]):
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise ValueError("Conversion command must not be empty")

    async def convert(self, document: dict[str, Any]) -> Any:
        with tempfile.TemporaryDirectory(prefix="proofbridge-convert-") as scratch:
            input_path = Path(scratch) / "document.json"
            output_path = Path(scratch) / "converted.json"

            async with aiofiles.open(input_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document))

            try:
                result = await run_process(
                    [*self.argv, "--input", str(input_path), "--output", str(output_path)]
                )
            except OSError as e:
                raise ConversionFailedError(
                    "Conversion command could not be launched", message_debug=str(e), cause=e
                ) from e

            if result.returncode != 0:
                raise ConversionFailedError(
                    f"Conversion command exited with status {result.returncode}",
                    message_debug=result.stderr_text.strip()[-2000:],
                )

            try:
                async with aiofiles.open(output_path, "r", encoding="utf-8") as f:
                    return json.loads(await f.read())
            except (OSError, ValueError) as e:
                raise ConversionFailedError(
                    "Conversion command produced no valid output", message_debug=str(e), cause=e
                ) from e

    async def terminate(self) -> None:
        # Nothing pooled; each conversion owns its own process.
        logger.info("Command engine terminated")


def get_conversion_engine(config: Settings = settings) -> ConversionEngine:
    """
    Factory function to get the configured conversion engine.

    Exactly one of CONVERSION_ENGINE_CALLABLE and CONVERSION_ENGINE_COMMAND
    must be set.

    Raises:
        ValueError: Neither or both engines are configured.
    """
    callable_path = config.CONVERSION_ENGINE_CALLABLE.strip()
    command = config.CONVERSION_ENGINE_COMMAND.strip()

    if callable_path and command:
        raise ValueError("Set only one of CONVERSION_ENGINE_CALLABLE and CONVERSION_ENGINE_COMMAND")
    if callable_path:
        return ProcessPoolConversionEngine(callable_path, max_workers=config.MAX_PROCESSES)
    if command:
        logger.info(f"Using command conversion engine: {command}")
        return CommandConversionEngine(command)
    raise ValueError("No conversion engine configured")
