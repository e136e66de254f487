from __future__ import annotations

import sqlite3
import threading

import pytest

from core.errors import ErrorCode, LedgerUnavailable
from replay.ledger import MemoryNonceLedger, SQLiteNonceLedger, open_ledger


class _Clock:
    def __init__(self, t: float = 1_700_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture(params=["memory", "sqlite"])
def ledger_and_clock(request, tmp_path):
    clock = _Clock()
    if request.param == "memory":
        led = MemoryNonceLedger(clock=clock)
    else:
        led = SQLiteNonceLedger(tmp_path / "nonces.db", clock=clock)
    yield led, clock
    if isinstance(led, SQLiteNonceLedger):
        led.close()


def test_first_claim_wins_second_is_replay(ledger_and_clock):
    led, clock = ledger_and_clock
    assert led.claim("a" * 64, clock.t + 60) is True
    assert led.claim("a" * 64, clock.t + 60) is False
    assert led.seen("a" * 64)
    assert not led.seen("b" * 64)
    assert led.size() == 1


def test_expired_record_can_be_reclaimed(ledger_and_clock):
    led, clock = ledger_and_clock
    assert led.claim("n1", clock.t + 10)
    clock.t += 11
    assert not led.seen("n1")
    assert led.claim("n1", clock.t + 10) is True
    assert led.claim("n1", clock.t + 10) is False


def test_purge_drops_only_expired(ledger_and_clock):
    led, clock = ledger_and_clock
    led.claim("old", clock.t + 5)
    led.claim("new", clock.t + 500)
    clock.t += 6
    assert led.purge() == 1
    assert led.size() == 1
    assert led.seen("new")


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_concurrent_claims_admit_exactly_one(backend, tmp_path):
    if backend == "memory":
        led = MemoryNonceLedger()
    else:
        led = SQLiteNonceLedger(tmp_path / "race.db", busy_timeout_ms=20_000)

    n = 16
    barrier = threading.Barrier(n)
    results: list[bool] = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        ok = led.claim("shared-nonce", 4_000_000_000.0)
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == n
    assert results.count(True) == 1


def test_memory_soft_cap_never_evicts_live_records():
    clock = _Clock()
    led = MemoryNonceLedger(max_entries=2, clock=clock)
    for i in range(5):
        assert led.claim(f"k{i}", clock.t + 100)
    assert led.size() == 5
    for i in range(5):
        assert led.claim(f"k{i}", clock.t + 100) is False


class _NoScanDict(dict):
    def items(self):
        raise AssertionError("ledger scanned every record")

    def keys(self):
        raise AssertionError("ledger scanned every record")

    def values(self):
        raise AssertionError("ledger scanned every record")

    def __iter__(self):
        raise AssertionError("ledger scanned every record")


def test_memory_purge_touches_only_expired_records():
    clock = _Clock()
    led = MemoryNonceLedger(max_entries=3, clock=clock)
    led._records = _NoScanDict()
    for i in range(6):
        assert led.claim(f"live{i}", clock.t + 1000)
    led.claim("short", clock.t + 5)
    clock.t += 10
    assert led.claim("next", clock.t + 1000)
    assert led.size() == 7
    assert not led.seen("short")
    assert all(led.seen(f"live{i}") for i in range(6))


def test_reclaimed_key_survives_its_old_expiry_entry():
    clock = _Clock()
    led = MemoryNonceLedger(clock=clock)
    led.claim("n", clock.t + 5)
    clock.t += 6
    assert led.claim("n", clock.t + 100)
    assert led.purge() == 0
    assert led.seen("n")
    clock.t += 101
    assert led.purge() == 1
    assert led.size() == 0


def test_sqlite_failure_raises_ledger_unavailable(tmp_path):
    led = SQLiteNonceLedger(tmp_path / "broken.db")
    led._db().execute("DROP TABLE nonces")
    with pytest.raises(LedgerUnavailable) as ei:
        led.claim("x", 4_000_000_000.0)
    assert ei.value.code == ErrorCode.LEDGER_UNAVAILABLE
    assert isinstance(ei.value.cause, sqlite3.Error)


def test_sqlite_records_are_shared_between_instances(tmp_path):
    path = tmp_path / "shared.db"
    a = SQLiteNonceLedger(path)
    b = SQLiteNonceLedger(path)
    assert a.claim("dup", 4_000_000_000.0)
    assert b.claim("dup", 4_000_000_000.0) is False


def test_open_ledger_selects_backend(tmp_path):
    from core.config import LedgerSettings

    assert isinstance(open_ledger(LedgerSettings()), MemoryNonceLedger)
    sq = open_ledger(LedgerSettings(backend="sqlite", sqlite_path=tmp_path / "l.db"))
    assert isinstance(sq, SQLiteNonceLedger)
