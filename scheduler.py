## scheduler.py

import asyncio
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(order=True)
class _Job:
    sort_key: Tuple[int, int]
    fn: Callable = field(compare=False)
    args: tuple = field(compare=False)
    future: asyncio.Future = field(compare=False)


class ComputeQueue:
    """
    Single logical compute stream.

    Jobs run one at a time on a dedicated worker thread, so the event loop is
    never blocked by tensor work. Pending jobs are ordered by priority (higher
    first), ties broken by arrival order.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None):
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="glyph-compute")
        self._owns_executor = executor is None
        self._queue: Optional[asyncio.PriorityQueue] = None
        self._worker: Optional[asyncio.Task] = None
        self._seq = itertools.count()
        self._current: Optional[_Job] = None
        self._closed = False

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            if self._queue is None:
                self._queue = asyncio.PriorityQueue()
            self._worker = asyncio.get_running_loop().create_task(self._run_jobs())

    async def run(self, priority: int, fn: Callable[..., Any], *args) -> Any:
        """Queues fn(*args) and waits for its result."""
        if self._closed:
            raise RuntimeError("ComputeQueue is closed")
        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        job = _Job((-int(priority), next(self._seq)), fn, args, future)
        self._queue.put_nowait(job)
        return await future

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def _run_jobs(self):
        loop = asyncio.get_running_loop()
        while True:
            job = await self._queue.get()
            self._current = job
            try:
                if job.future.cancelled():
                    continue
                try:
                    result = await loop.run_in_executor(self._executor, job.fn, *job.args)
                except Exception as e:
                    logger.debug("Compute job failed: %s", e)
                    if not job.future.done():
                        job.future.set_exception(e)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._current = None
                self._queue.task_done()

    async def close(self):
        """Stops the worker and shuts the executor down. Pending jobs are cancelled."""
        self._closed = True
        current, self._current = self._current, None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if current is not None:
            current.future.cancel()
        if self._queue is not None:
            while not self._queue.empty():
                job = self._queue.get_nowait()
                job.future.cancel()
        if self._owns_executor:
            # Waits for the running job off the event loop
            await asyncio.get_running_loop().run_in_executor(None, self._executor.shutdown)
