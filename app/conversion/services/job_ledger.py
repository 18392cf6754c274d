"""
JobLedger: In-memory idempotency gate for proof conversion jobs.

This service handles:
- Accepting a filename for processing at most once at a time
- Refusing new work once shutdown has begun
- Releasing failed jobs so a rediscovered file can be retried
"""

from __future__ import annotations

import threading

from loguru import logger


class ShutdownFlag:
    """
    Process-wide shutting-down flag.

    Starts cleared, is set exactly once, and is never reset.
    """

    def __init__(self):
        self._event = threading.Event()

    def set(self) -> bool:
        """Set the flag. Returns True only for the call that flipped it."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def is_set(self) -> bool:
        return self._event.is_set()


class JobLedger:
    """
    Set of filenames currently accepted for processing.

    A filename is a member while its Job is in flight or has been written;
    failed jobs are released. All access goes through one lock, so calls
    from the watchdog thread and the event loop can interleave safely.

    Usage:
        ledger = JobLedger(shutdown_flag)
        if ledger.try_accept("100_200.bin"):
            ...
            ledger.release("100_200.bin")  # on failure only
    """

    def __init__(self, shutdown_flag: ShutdownFlag | None = None):
        self._lock = threading.Lock()
        self._members: set[str] = set()
        self._shutdown = shutdown_flag or ShutdownFlag()

    def try_accept(self, job_id: str) -> bool:
        """
        Accept a job id unless it is already a member or shutdown has begun.

        Args:
            job_id: The artifact filename.

        Returns:
            bool: True if the caller now owns the job, False otherwise.
        """
        with self._lock:
            if self._shutdown.is_set():
                logger.debug(f"[{job_id}] Not accepted: shutting down")
                return False
            if job_id in self._members:
                logger.debug(f"[{job_id}] Not accepted: already in ledger")
                return False
            self._members.add(job_id)
            return True

    def release(self, job_id: str) -> None:
        """Remove a job id so the file can be processed again later."""
        with self._lock:
            self._members.discard(job_id)
        logger.debug(f"[{job_id}] Released from ledger")

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._members

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)
