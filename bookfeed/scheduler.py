"""Periodic ingestion sweeps."""
import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Deque, Iterable, Optional, Set, Tuple

from bookfeed.errors import CatalogError
from bookfeed.ingest import FetchOrchestrator
from bookfeed.parse import GOOGLE_BOOKS

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Re-runs the fetch orchestrator over a list of subjects.

    Sweeps start at fixed intervals whether or not the previous one has
    finished; there is no overlap guard.
    """

    def __init__(self, orchestrator: FetchOrchestrator, provider: str = GOOGLE_BOOKS):
        self.orchestrator = orchestrator
        self.provider = provider
        self._running: Set[asyncio.Task] = set()

    async def sweep(self, subjects: Iterable[str], per_subject_target: int) -> int:
        """Run every subject once, strictly one task at a time."""
        queue: Deque[Tuple[str, str]] = deque((self.provider, s) for s in subjects)
        total = 0
        while queue:
            provider, subject = queue.popleft()
            try:
                total += await self.orchestrator.run_fetch(provider, subject, per_subject_target)
            except CatalogError as e:
                logger.error(f"Task {provider}/{subject} failed: {e}")
            except Exception:
                logger.exception(f"Task {provider}/{subject} crashed")
        logger.info(f"Sweep finished: {total} new books")
        return total

    def _start_sweep(self, subjects, per_subject_target) -> asyncio.Task:
        task = asyncio.create_task(self.sweep(subjects, per_subject_target))
        self._running.add(task)
        task.add_done_callback(self._sweep_done)
        return task

    def _sweep_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Sweep failed: {error!r}", exc_info=error)

    async def schedule(
        self,
        subjects: Iterable[str],
        per_subject_target: int,
        interval_hours: float = 24,
        max_sweeps: Optional[int] = None
    ) -> None:
        """
        Sweep now, then again every ``interval_hours``.

        Runs forever unless ``max_sweeps`` is given, in which case it waits
        for the started sweeps to finish and returns.
        """
        subjects = list(subjects)
        interval = interval_hours * 60 * 60
        logger.info(f"Book fetching scheduled to run every {interval_hours} hours")

        started = 0
        while max_sweeps is None or started < max_sweeps:
            if started:
                logger.info(f"Scheduled book fetching started at {datetime.now().isoformat()}")
            self._start_sweep(subjects, per_subject_target)
            started += 1
            if max_sweeps is not None and started >= max_sweeps:
                break
            await asyncio.sleep(interval)

        if self._running:
            await asyncio.gather(*self._running)
