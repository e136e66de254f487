import pytest

from core.config import load_settings
from core.logging import setup_logging
from replay.ledger import MemoryNonceLedger
from qr.service import SecureTokenService


class FakeClock:
    """Mutable wall clock (seconds) for expiry-sensitive tests."""

    def __init__(self, now: float = 1_750_000_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: pure-Python pairing checks (seconds per test)")


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    setup_logging(level="WARNING", log_format="console")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        _env_file=None,
        environment="test",
        zk={"artifacts_dir": tmp_path / "artifacts", "allow_mock": True},
        pool={"max_workers": 2, "request_timeout": 60},
        ledger={"backend": "memory"},
    )


@pytest.fixture
def ledger(clock):
    return MemoryNonceLedger(clock=clock)


@pytest.fixture
def token_service(settings, ledger, clock):
    return SecureTokenService(settings.token, ledger, clock=clock)
