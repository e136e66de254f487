"""
Bounded worker pool for proving and pairing checks
==================================================

Proof generation and pairing-based verification are CPU-heavy and must never
run on a request-handling thread or event loop. `WorkerPool` wraps a
`concurrent.futures` executor sized to the host CPU count and adds:

- **Deadlines.** Every task carries an absolute deadline. If a task is still
  queued when its deadline passes it is dropped before it starts
  (`DeadlineExceeded`); a caller that stops waiting also cancels it.
- **Backpressure.** `map_bounded` keeps at most ``window`` tasks in flight;
  submission blocks once the window is full, so a large batch queues in the
  caller instead of piling unbounded work into the executor.
- **Async bridge.** `run_async` awaits the same work from asyncio code.

The process-pool flavour requires the callable and its arguments to be
picklable (module-level functions such as `verify_groth16`).
"""

from __future__ import annotations

import asyncio
import os
import threading
import time
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Iterable, List, Optional, TypeVar, Union

from core.errors import DeadlineExceeded
from core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def _run_with_deadline(deadline: Optional[float], fn: Callable[..., T], args: tuple, kwargs: dict) -> T:
    # Wall clock, so the check means the same thing inside a worker process.
    if deadline is not None and time.time() >= deadline:
        raise DeadlineExceeded("task expired before it started")
    return fn(*args, **kwargs)


def _remaining(deadline: Optional[float]) -> Optional[float]:
    return None if deadline is None else max(0.0, deadline - time.time())


class WorkerPool:
    def __init__(
        self,
        *,
        max_workers: Optional[int] = None,
        kind: str = "thread",
        batch_window: int = 8,
        default_timeout: Optional[float] = None,
        name: str = "veridity-zk",
    ) -> None:
        self.max_workers = max_workers or os.cpu_count() or 1
        self.kind = kind
        self.batch_window = max(1, int(batch_window))
        self.default_timeout = default_timeout
        self.name = name
        self._executor: Optional[Executor] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "WorkerPool":
        """Build from `core.config.PoolSettings`."""
        return cls(
            max_workers=settings.max_workers,
            kind=settings.kind,
            batch_window=settings.batch_window,
            default_timeout=settings.request_timeout,
        )

    # Lifecycle ----------------------------------------------------------------

    def _get_executor(self) -> Executor:
        with self._lock:
            if self._executor is None:
                if self.kind == "process":
                    self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
                else:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix=self.name
                    )
                log.info("zk.pool.start", kind=self.kind, workers=self.max_workers)
            return self._executor

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            ex, self._executor = self._executor, None
        if ex is not None:
            ex.shutdown(wait=wait, cancel_futures=True)
            log.info("zk.pool.stop", kind=self.kind)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # Submission ---------------------------------------------------------------

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        t = self.default_timeout if timeout is None else timeout
        return None if t is None else time.time() + t

    def submit(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Future:
        return self._get_executor().submit(_run_with_deadline, self._deadline(timeout), fn, args, kwargs)

    def run(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> T:
        """Run `fn` on the pool and wait for it, at most `timeout` seconds."""
        t = self.default_timeout if timeout is None else timeout
        fut = self.submit(fn, *args, timeout=t, **kwargs)
        try:
            return fut.result(timeout=t)
        except FuturesTimeout:
            fut.cancel()
            log.warning("zk.pool.deadline", fn=getattr(fn, "__name__", repr(fn)), timeout=t)
            raise DeadlineExceeded("task did not finish before its deadline", timeout=t) from None

    async def run_async(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> T:
        t = self.default_timeout if timeout is None else timeout
        fut = asyncio.wrap_future(self.submit(fn, *args, timeout=t, **kwargs))
        try:
            return await asyncio.wait_for(fut, timeout=t)
        except asyncio.TimeoutError:
            raise DeadlineExceeded("task did not finish before its deadline", timeout=t) from None

    def map_bounded(
        self,
        fn: Callable[[Any], T],
        items: Iterable[Any],
        *,
        window: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[Union[T, BaseException]]:
        """
        Apply `fn` to every item with at most `window` tasks in flight.

        Results come back in input order; an item whose task raised (or missed
        its deadline) yields the exception object instead of a result.

        ``timeout`` bounds the whole batch: one deadline is taken when the call
        starts and shared by every task. Items still waiting for a window slot
        when it passes are never submitted.
        """
        window = max(1, int(window or self.batch_window))
        t = self.default_timeout if timeout is None else timeout
        deadline = None if t is None else time.time() + t
        slots = threading.BoundedSemaphore(window)
        futures: List[Optional[Future]] = []
        expired = False

        for item in items:
            if not expired:
                remaining = _remaining(deadline)
                expired = remaining == 0.0 or not slots.acquire(timeout=remaining)
            if expired:
                futures.append(None)
                continue
            fut = self._get_executor().submit(_run_with_deadline, deadline, fn, (item,), {})
            fut.add_done_callback(lambda _f: slots.release())
            futures.append(fut)

        out: List[Union[T, BaseException]] = []
        missed = 0
        for fut in futures:
            if fut is None:
                missed += 1
                out.append(DeadlineExceeded("batch deadline passed before the task was submitted", timeout=t))
                continue
            try:
                out.append(fut.result(timeout=_remaining(deadline)))
            except FuturesTimeout:
                fut.cancel()
                missed += 1
                out.append(DeadlineExceeded("task did not finish before its deadline", timeout=t))
            except Exception as e:
                out.append(e)
        if missed:
            log.warning("zk.pool.batch_deadline", items=len(out), missed=missed, timeout=t)
        return out


__all__ = ["WorkerPool"]
