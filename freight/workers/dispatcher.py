"""
Background Dispatch Worker
==========================

Runs post-commit side effects (notifications, weather advisories) off the
request path.

Delivery guarantees
-------------------
* Best effort: a job is attempted once plus at most ``max_retries`` more
  times, with exponential backoff between attempts.
* A job that still fails is logged and dropped.  It never reaches back into
  the transition that produced it, which is already committed.
* The queue is bounded; when it is full new jobs are dropped with a warning
  instead of blocking the caller.
* On shutdown in-flight jobs are cancelled and anything still queued is
  left unprocessed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class BackgroundDispatcher:
    def __init__(
        self,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        queue_size: int = 1000,
        workers: int = 4,
        poll_interval: float = 0.5,
    ):
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.workers = workers
        self.poll_interval = poll_interval
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []
        self._stop_event: asyncio.Event | None = None

    # ── Public API ────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._loop(), name=f"dispatcher-{i}")
            for i in range(self.workers)
        ]
        logger.info(
            "Dispatcher started (workers=%d, max_retries=%d)",
            self.workers,
            self.max_retries,
        )

    async def stop(self) -> None:
        """Signal the workers, cancel in-flight jobs and wait for every worker to exit.

        A worker whose cancellation is lost (``asyncio.wait_for`` can absorb
        one on Python < 3.12) still leaves within ``poll_interval`` because
        it checks the stop event between jobs.
        """
        if self._stop_event:
            self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if not self._queue.empty():
            logger.warning("Dispatcher stopped with %d pending jobs", self._queue.qsize())
        logger.info("Dispatcher stopped")

    def submit(self, name: str, job: Job) -> bool:
        """Queue *job*; returns False if it had to be dropped."""
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.warning("Dispatch queue full, dropping job %s", name)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def run_with_retry(self, name: str, job: Job) -> bool:
        delay = self.backoff_seconds
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await job()
                return True
            except asyncio.CancelledError:
                raise
            except Exception:
                if attempt == attempts:
                    logger.exception("Job %s failed after %d attempts", name, attempts)
                    return False
                logger.warning(
                    "Job %s failed (attempt %d/%d), retrying in %.2fs",
                    name,
                    attempt,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 2
        return False

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                name, job = await asyncio.wait_for(
                    self._queue.get(), timeout=self.poll_interval
                )
            except asyncio.TimeoutError:
                continue  # re-check the stop event
            if self._stop_event.is_set():
                logger.warning("Dispatcher stopping, dropping job %s", name)
                self._queue.task_done()
                break
            try:
                await self.run_with_retry(name, job)
            finally:
                self._queue.task_done()
