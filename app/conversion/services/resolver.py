"""
Ordered fallback across candidate executable locations.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Sequence, TypeVar

from loguru import logger

from proofbridge_core.runtime.errors import TranscodeExecutableUnavailableError

T = TypeVar("T")


class CandidateResolver:
    """
    Invokes the first candidate executable that can actually be launched.

    Resolution is not cached: every call starts again from the first
    candidate, so a location that stops working falls through to the next
    one on that very call. Only launch failures (OSError) fall through; a
    candidate that starts and then exits non-zero is a real result and is
    returned or raised as-is.

    Usage:
        resolver = CandidateResolver(["./target/release/tool", "/usr/local/bin/tool"])
        result = await resolver.run(lambda exe: run_process([exe, "--help"]))
    """

    def __init__(self, candidates: Sequence[str]):
        if not candidates:
            raise ValueError("At least one candidate executable is required")
        self.candidates = list(candidates)

    async def run(self, invoke: Callable[[str], Awaitable[T]]) -> T:
        """
        Call `invoke` with each candidate in order until one launches.

        Args:
            invoke: Performs the real invocation for a candidate path.

        Returns:
            Whatever `invoke` returns for the first launchable candidate.

        Raises:
            TranscodeExecutableUnavailableError: Every candidate failed to launch.
        """
        last_error: OSError | None = None

        for candidate in self.candidates:
            try:
                result = await invoke(candidate)
            except OSError as e:
                logger.debug(f"Candidate {candidate} unavailable: {e}")
                last_error = e
                continue

            logger.debug(f"Resolved executable {candidate}")
            return result

        raise TranscodeExecutableUnavailableError(self.candidates, cause=last_error)
