"""
Run context shared by every component taking part in one pipeline run.

Carries the cancellation signal and collects non-fatal issues (skipped
records, rate-change alerts, tier failures) for the run summary.
"""

import asyncio
import logging
from typing import List, Optional

from core.exceptions import RunCancelledError

logger = logging.getLogger(__name__)


class RunContext:
    """
    Cancellation and issue collection for one run.

    Wait points (limiter waits, backoff sleeps) go through ``sleep()`` so a
    cancel wakes them immediately.
    """

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider
        self.issues: List[str] = []
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        if not self._cancelled.is_set():
            logger.warning(f"Run cancelled for {self.provider or 'pipeline'}")
        self._cancelled.set()

    def check(self) -> None:
        """Raise RunCancelledError when the run has been cancelled"""
        if self._cancelled.is_set():
            raise RunCancelledError(
                "Run cancelled",
                context={"provider": self.provider}
            )

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first"""
        self.check()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.check()

    def report_issue(self, issue: str) -> None:
        logger.warning(f"[{self.provider or 'pipeline'}] {issue}")
        self.issues.append(issue)
