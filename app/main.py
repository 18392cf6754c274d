"""
Entry point for the proof conversion service.

Watches SAVED_PROOFS_DIR, converts every new proof and writes the result to
CONVERTED_PROOFS_DIR until SIGINT/SIGTERM, then drains in-flight work.

Usage:
    proofbridge
    python -m app.main
"""

import asyncio
import signal
import sys

from loguru import logger

from app.conversion.services.orchestrator import get_pipeline_orchestrator
from proofbridge_core.config import settings
from proofbridge_core.logging import setup_logging
from proofbridge_core.runtime.errors import DirectoryIOFailedError

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


async def serve(watch: bool = True) -> int:
    """
    Build the pipeline and run it to completion.

    Args:
        watch: Keep watching after the backlog (False for a one-shot drain).

    Returns:
        int: Process exit code.
    """
    try:
        orchestrator = get_pipeline_orchestrator()
    except (ValueError, ImportError) as e:
        logger.error(f"Failed to initialize service: {e}")
        return EXIT_STARTUP_FAILURE

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, orchestrator.request_shutdown)

    try:
        await orchestrator.run(watch=watch)
    except DirectoryIOFailedError as e:
        logger.error(f"Failed to initialize service: {e} ({e.message_debug})")
        return EXIT_STARTUP_FAILURE
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    return EXIT_OK


def main() -> int:
    setup_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
    logger.info(f"Starting {settings.SERVICE_NAME} (max processes: {settings.MAX_PROCESSES})")
    return asyncio.run(serve())


if __name__ == "__main__":
    sys.exit(main())
