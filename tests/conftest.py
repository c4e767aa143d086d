"""Shared pytest fixtures."""

import gc
import logging
import os
import sys
import threading
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, settings

from listing_dedup.config import Settings
from listing_dedup.db.storage import DedupStorage
from listing_dedup.logging import configure_logging
from listing_dedup.models import Listing


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True, scope="session")
def _log_to_stderr() -> None:
    """Keep structured logs off stdout so CLI output stays parseable."""
    configure_logging(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection. If a test
    leaks a connection, the thread prevents clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False
    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await storage.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


# Budapest, VI. district
BASE_LAT = 47.5025
BASE_LON = 19.0635

# Degrees of latitude per meter
LAT_PER_METER = 1 / 111_195


def offset_north(lat: float, meters: float) -> float:
    """Latitude ``meters`` north of ``lat``."""
    return lat + meters * LAT_PER_METER


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_path=":memory:")


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[DedupStorage, None]:
    """In-memory storage instance."""
    storage = DedupStorage(":memory:")
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def make_listing() -> Callable[..., Listing]:
    """Factory for Listing instances with sensible defaults and auto-incrementing IDs."""
    _counter = 0

    def _make(**overrides: Any) -> Listing:
        nonlocal _counter
        _counter += 1
        defaults: dict[str, Any] = {
            "id": f"lst-{_counter:04d}",
            "title": f"Listing {_counter}",
            "description": None,
            "address": None,
            "latitude": None,
            "longitude": None,
            "owner_id": None,
            "amenities": frozenset(),
            "created_at": datetime(2025, 1, 15, 10, 30, tzinfo=UTC) + timedelta(minutes=_counter),
        }
        defaults.update(overrides)
        return Listing(**defaults)

    return _make


@pytest.fixture
def listing_a() -> Listing:
    """The reference listing of the 'identical re-post' scenario."""
    return Listing(
        id="A",
        title="Sunny 2BR",
        description="Bright two bedroom flat with balcony, close to the metro.",
        address="123 Main Street",
        latitude=BASE_LAT,
        longitude=BASE_LON,
        owner_id="O1",
        amenities={"gym", "wifi"},
        created_at=datetime(2025, 1, 15, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def listing_b(listing_a: Listing) -> Listing:
    """Identical re-post of listing A."""
    return listing_a.model_copy(
        update={"id": "B", "created_at": datetime(2025, 1, 16, 9, 0, tzinfo=UTC)}
    )


@pytest.fixture
def listing_c() -> Listing:
    """Unrelated listing more than 5km from A."""
    return Listing(
        id="C",
        title="Quiet studio near the river",
        description="Compact studio, newly renovated.",
        address="9 Duna Utca",
        latitude=offset_north(BASE_LAT, 6_000),
        longitude=BASE_LON,
        owner_id="O2",
        amenities={"parking"},
        created_at=datetime(2025, 1, 17, 9, 0, tzinfo=UTC),
    )
