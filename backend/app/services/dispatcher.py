"""
Work Dispatcher

Hand-off between the entry points that win a transition and the
processing worker. Entry points enqueue and return immediately; queue
consumers run the worker. Outcomes are only observable by polling the
persisted status.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional


logger = logging.getLogger(__name__)


@dataclass
class ProcessingJob:
    """
    One unit of work for the processing worker.

    ``audio`` carries the bytes in memory when the submitter still holds
    them; otherwise the worker fetches them from storage.
    """
    analysis_id: str
    audio: Optional[bytes] = field(default=None, repr=False)
    content_type: Optional[str] = None


JobHandler = Callable[[ProcessingJob], Awaitable[object]]


class WorkDispatcher(ABC):
    """Interface for enqueueing processing work."""

    @abstractmethod
    async def enqueue(self, job: ProcessingJob) -> None:
        """Schedule a job without waiting for it to run."""


class InProcessDispatcher(WorkDispatcher):
    """
    asyncio.Queue backed dispatcher with a fixed pool of consumers.

    Jobs still queued when the process dies are lost; the stale
    processing sweep is the recovery path for them.
    """

    def __init__(self, concurrency: int = 2):
        self._queue: asyncio.Queue[ProcessingJob] = asyncio.Queue()
        self._concurrency = max(1, concurrency)
        self._consumers: list[asyncio.Task] = []
        self._handler: Optional[JobHandler] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self, handler: JobHandler) -> None:
        """Start the consumer tasks (called from the app lifespan)."""
        if self._consumers:
            return
        self._handler = handler
        for index in range(self._concurrency):
            self._consumers.append(
                asyncio.create_task(self._consume(), name=f"analysis-worker-{index}")
            )
        logger.info(f"Started {self._concurrency} analysis worker(s)")

    async def enqueue(self, job: ProcessingJob) -> None:
        self._queue.put_nowait(job)
        logger.info(f"Enqueued analysis {job.analysis_id}")

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._handler(job)
            except Exception:
                logger.exception(f"Worker crashed on analysis {job.analysis_id}")
            finally:
                job.audio = None
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel consumers (called on shutdown)."""
        for task in self._consumers:
            task.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers.clear()
        logger.info("Analysis workers stopped")
