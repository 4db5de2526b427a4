"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from pastevault.config import (
    CacheSettings,
    CryptoSettings,
    LimitSettings,
    Settings,
    StorageSettings,
)
from pastevault.core.metrics import MetricsCollector
from pastevault.core.repository import PasteRepository
from pastevault.core.service import PasteService


class FakeClock:
    """Controllable stand-in for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Temporary SQLite database file."""
    return tmp_path / "pastes.db"


@pytest.fixture
def crypto_settings() -> CryptoSettings:
    """Crypto settings with cheap Argon2 parameters."""
    return CryptoSettings(
        password_salt="test-salt-1234",
        signing_key="test-signing-key-0123456789abcdef",
        argon2_time_cost=1,
        argon2_memory_cost_kib=256,
        argon2_parallelism=1,
    )


@pytest.fixture
def storage_settings(db_path: Path) -> StorageSettings:
    return StorageSettings(
        database_path=db_path,
        purge_interval_seconds=0,
        purge_batch_size=500,
        max_insert_retries=10,
    )


@pytest.fixture
def test_settings(storage_settings: StorageSettings, crypto_settings: CryptoSettings) -> Settings:
    """Settings for a service under test: temp database, no sweeper."""
    return Settings(
        log_level="DEBUG",
        worker_threads=4,
        storage=storage_settings,
        crypto=crypto_settings,
        cache=CacheSettings(capacity=16),
        limits=LimitSettings(max_body_size=64 * 1024, request_timeout_seconds=10.0),
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a fresh registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def repository(storage_settings: StorageSettings) -> Generator[PasteRepository, None, None]:
    repo = PasteRepository(storage_settings)
    repo.open()
    yield repo
    repo.close()


@pytest_asyncio.fixture
async def service(
    test_settings: Settings,
    metrics: MetricsCollector,
    clock: FakeClock,
) -> AsyncGenerator[PasteService, None]:
    """Started paste service driven by the fake clock."""
    paste_service = PasteService(test_settings, metrics=metrics, clock=clock)
    await paste_service.start()
    yield paste_service
    await paste_service.stop()


@pytest.fixture
def sample(metrics: MetricsCollector):
    """Read a sample from the test registry, 0 when absent."""

    def read(name: str, **labels: str) -> float:
        value = metrics.registry.get_sample_value(name, labels or None)
        return value or 0.0

    return read
