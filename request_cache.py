## request_cache.py

import asyncio
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, List, Optional

import numpy as np

from config import CACHE_PARAMS
from errors import ComputeFailure, GlyphError

logger = logging.getLogger(__name__)

PENDING = 'PENDING'
COMPLETE = 'COMPLETE'
RETENTION_POLICIES = ('evict', 'retain')

ResultSink = Callable[[Any], None]


@dataclass
class _Waiter:
    future: asyncio.Future
    sink: Optional[ResultSink] = None


@dataclass
class CacheEntry:
    key: Hashable
    state: str = PENDING
    waiters: List[_Waiter] = field(default_factory=list)
    result: Any = None
    task: Optional[asyncio.Task] = None


class RequestCache:
    """
    Coalesces identical requests into a single computation.

    submit() returns a future per caller. The first submit for a key starts
    compute_fn; later submits for the same key while it is PENDING only register
    a waiter. Results are fanned out to waiters in registration order.
    A failed computation is never cached: the entry is evicted so the next
    submit retries.
    """

    def __init__(self, retention: str = CACHE_PARAMS['RETENTION'],
                 max_entries: int = CACHE_PARAMS['MAX_ENTRIES']):
        if retention not in RETENTION_POLICIES:
            raise ValueError(f"Unknown retention policy {retention!r}, expected one of {RETENTION_POLICIES}")
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.retention = retention
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = {'computations': 0, 'coalesced': 0, 'hits': 0, 'failures': 0}

    # --- 1. SUBMISSION ---
    def submit(self, key: Hashable, compute_fn: Callable[[], Awaitable[Any]],
               result_sink: Optional[ResultSink] = None) -> asyncio.Future:
        """Must be called from the event loop that will deliver the result."""
        loop = asyncio.get_running_loop()
        waiter = _Waiter(loop.create_future(), result_sink)

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = CacheEntry(key, waiters=[waiter])
                self._entries[key] = entry
                self.stats['computations'] += 1
                entry.task = loop.create_task(self._compute(entry, compute_fn))
                logger.debug("Started computation for %s", key)
                return waiter.future

            if entry.state == PENDING:
                entry.waiters.append(waiter)
                self.stats['coalesced'] += 1
                logger.debug("Coalesced request for %s (%d waiters)", key, len(entry.waiters))
                return waiter.future

            # Retained COMPLETE entry
            self._entries.move_to_end(key)
            self.stats['hits'] += 1
            result = entry.result

        self._deliver(waiter, result)
        return waiter.future

    # --- 2. COMPLETION ---
    async def _compute(self, entry: CacheEntry, compute_fn: Callable[[], Awaitable[Any]]):
        try:
            result = await compute_fn()
        except asyncio.CancelledError:
            for waiter in self._take_waiters(entry, evict=True):
                waiter.future.cancel()
            raise
        except GlyphError as e:
            self._fail(entry, e)
        except Exception as e:
            failure = ComputeFailure(f"Computation for {entry.key} failed: {e}")
            failure.__cause__ = e
            self._fail(entry, failure)
        else:
            if isinstance(result, np.ndarray):
                # Every waiter gets the same array; none of them may alter it for the others
                result.setflags(write=False)
            with self._lock:
                entry.result = result
                entry.state = COMPLETE
            waiters = self._take_waiters(entry, evict=self.retention == 'evict')
            if self.retention == 'retain':
                self._trim()
            for waiter in waiters:
                self._deliver(waiter, result)

    def _fail(self, entry: CacheEntry, error: BaseException):
        self.stats['failures'] += 1
        waiters = self._take_waiters(entry, evict=True)
        logger.warning("Computation for %s failed, notifying %d waiters: %s", entry.key, len(waiters), error)
        for waiter in waiters:
            if not waiter.future.done():
                waiter.future.set_exception(error)

    def _take_waiters(self, entry: CacheEntry, evict: bool) -> List[_Waiter]:
        with self._lock:
            waiters, entry.waiters = entry.waiters, []
            if evict and self._entries.get(entry.key) is entry:
                del self._entries[entry.key]
        return waiters

    def _deliver(self, waiter: _Waiter, result: Any):
        if waiter.future.done():
            # Caller gave up on this request; the others still get the result
            return
        if waiter.sink is not None:
            try:
                waiter.sink(result)
            except Exception as e:
                logger.warning("Result sink failed: %s", e)
                waiter.future.set_exception(e)
                return
        waiter.future.set_result(result)

    def _trim(self):
        with self._lock:
            completed = [k for k, e in self._entries.items() if e.state == COMPLETE]
            for key in completed[:max(0, len(completed) - self.max_entries)]:
                del self._entries[key]

    # --- 3. INTROSPECTION ---
    def state_of(self, key: Hashable) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.state if entry is not None else None

    def clear(self):
        """Drops retained results. Pending computations are left alone."""
        with self._lock:
            for key in [k for k, e in self._entries.items() if e.state == COMPLETE]:
                del self._entries[key]

    def __contains__(self, key):
        return key in self._entries

    def __len__(self):
        return len(self._entries)
