"""
Shared pytest fixtures for the power monitor tests.

Provides:
- A complete configuration dict with fast timings
- An initialized JSON key/value store in a temp directory
- Fake scanner, network and HTTP session collaborators for the poller
"""
import asyncio
from typing import List, Optional

import pytest

from config_loader import get_sample_config
from discovery.address_cache import AddressCache
from discovery.models import ScanResult
from storage import KeyValueStore

SCENARIO_C_PAYLOAD = 'ionbridge_port_current{id="0"} 1500\nionbridge_port_voltage{id="0"} 5000\n'


@pytest.fixture
def config(tmp_path):
    """Sample configuration with timings shortened for tests."""
    cfg = get_sample_config()
    cfg['storage']['path'] = str(tmp_path / "state.json")
    cfg['discovery'].update({
        'connect_timeout': 0.5,
        'read_timeout': 0.2,
        'probe_pause': 0,
        'worker_stagger': 0,
    })
    cfg['polling']['network_check_interval'] = 0.01
    cfg['logging']['file'] = None
    return cfg


@pytest.fixture
def store(config):
    kv = KeyValueStore(config)
    assert kv.initialize()
    yield kv
    kv.close()


@pytest.fixture
def address_cache(store, config):
    return AddressCache(store, config)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeNetwork:
    def __init__(self, up: bool = True, prefix: Optional[str] = "10.0.0."):
        self.up = up
        self.prefix = prefix

    def is_up(self) -> bool:
        return self.up

    def subnet_prefix(self) -> Optional[str]:
        return self.prefix


class FakeScanner:
    """Scanner double: cached-address validity and scan matches are set per test."""

    def __init__(self, cached_valid: bool = True, matches: Optional[List[str]] = None):
        self.cached_valid = cached_valid
        self.matches = matches or []
        self.validated: List[str] = []
        self.scanned: List[str] = []
        self.last_result = None
        self.scan_lock = asyncio.Lock()

    async def validate_cached(self, address: str) -> bool:
        self.validated.append(address)
        return self.cached_valid

    async def scan(self, prefix: str, on_result=None) -> ScanResult:
        self.scanned.append(prefix)
        for address in self.matches:
            if on_result is not None:
                await on_result(address, True)
        result = ScanResult(
            prefix=prefix,
            address=self.matches[-1] if self.matches else None,
            matches=list(self.matches),
            hosts_probed=254
        )
        self.last_result = result
        return result

    def is_scanning(self) -> bool:
        return self.scan_lock.locked()


class FakeResponse:
    def __init__(self, status: int = 200, body: str = ""):
        self.status = status
        self.body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self, errors: str = 'strict') -> str:
        return self.body


class FakeSession:
    def __init__(self, factory: "FakeSessionFactory"):
        self.factory = factory
        self.closed = False

    def get(self, url: str):
        self.factory.requests.append(url)
        outcome = self.factory.script.pop(0) if self.factory.script else self.factory.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class FakeSessionFactory:
    """
    Stands in for create_feed_session.
    Each request pops the next scripted outcome: a FakeResponse or an exception to raise.
    """

    def __init__(self, default: Optional[FakeResponse] = None):
        self.script: list = []
        self.default = default or FakeResponse(200, SCENARIO_C_PAYLOAD)
        self.sessions: List[FakeSession] = []
        self.requests: List[str] = []

    def __call__(self, timeout_seconds: float) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def fake_scanner():
    return FakeScanner()


@pytest.fixture
def session_factory():
    return FakeSessionFactory()


async def wait_for_condition(predicate, timeout: float = 2.0, step: float = 0.01):
    """Poll predicate until true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(step)
