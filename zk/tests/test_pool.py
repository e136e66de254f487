from __future__ import annotations

import threading
import time

import pytest

from core.errors import DeadlineExceeded
from zk.pool import WorkerPool


def _square(x):
    return x * x


def _boom(x):
    if x == 3:
        raise ValueError("three")
    return x


def test_run_returns_result():
    with WorkerPool(max_workers=2) as pool:
        assert pool.run(_square, 7) == 49


def test_run_deadline():
    with WorkerPool(max_workers=1) as pool:
        with pytest.raises(DeadlineExceeded):
            pool.run(time.sleep, 0.5, timeout=0.05)


def test_queued_task_expires_before_start():
    gate = threading.Event()
    with WorkerPool(max_workers=1) as pool:
        blocker = pool.submit(gate.wait, 5)
        queued = pool.submit(_square, 2, timeout=0.01)
        time.sleep(0.05)
        gate.set()
        blocker.result()
        with pytest.raises(DeadlineExceeded):
            queued.result()


def test_map_bounded_keeps_order_and_exceptions():
    with WorkerPool(max_workers=3) as pool:
        out = pool.map_bounded(_boom, range(6), window=2)
    assert out[:3] == [0, 1, 2]
    assert isinstance(out[3], ValueError)
    assert out[4:] == [4, 5]


def test_map_bounded_window_limits_in_flight():
    lock = threading.Lock()
    state = {"now": 0, "peak": 0}

    def work(_):
        with lock:
            state["now"] += 1
            state["peak"] = max(state["peak"], state["now"])
        time.sleep(0.02)
        with lock:
            state["now"] -= 1

    with WorkerPool(max_workers=8) as pool:
        pool.map_bounded(work, range(12), window=3)
    assert state["peak"] <= 3


def test_map_bounded_timeout_covers_the_whole_batch():
    started = []

    def slow(x):
        started.append(x)
        time.sleep(0.4)
        return x

    with WorkerPool(max_workers=2) as pool:
        t0 = time.monotonic()
        out = pool.map_bounded(slow, [1, 2, 3, 4], window=1, timeout=0.5)
        elapsed = time.monotonic() - t0
    assert out[0] == 1
    assert all(isinstance(r, DeadlineExceeded) for r in out[1:])
    assert elapsed < 0.9
    assert 3 not in started and 4 not in started


def test_shutdown_is_idempotent():
    pool = WorkerPool(max_workers=1)
    pool.run(_square, 1)
    pool.shutdown()
    pool.shutdown()
    assert pool.run(_square, 3) == 9
    pool.shutdown()


@pytest.mark.asyncio
async def test_run_async():
    with WorkerPool(max_workers=1) as pool:
        assert await pool.run_async(_square, 5) == 25
        with pytest.raises(DeadlineExceeded):
            await pool.run_async(time.sleep, 0.5, timeout=0.05)
