"""
Pytest Configuration and Fixtures for questlog Tests
====================================================

Purpose
-------
Centralized fixtures for the questlog test suite: mocks for unit tests, a
real per-test database for integration tests, and a wired service container.

Responsibilities
----------------
- Per-test SQLite file database (aiosqlite) with the full schema
- Optional PostgreSQL testcontainer for the `postgres` marker
- ConfigManager isolation (overrides dropped after every test)
- Service container wired to a fresh EventBus
- Factories for users, stats and family members

Architecture Notes
------------------
- Unit tests use mocks (fast, isolated)
- Integration tests use a real database; each test gets its own file, so
  there is no cross-test state to clean up
- Events are recorded by subscribing to every domain event on the bus
"""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import uuid
from typing import Any, AsyncGenerator, Dict, Generator, List, Tuple

import pytest
import pytest_asyncio

from questlog.core.config.config import Config
from questlog.core.config.manager import ConfigManager
from questlog.core.database.service import DatabaseService
from questlog.core.event.bus import EventBus
from questlog.core.logging.logger import clear_log_context, get_logger
from questlog.core.services.container import ServiceContainer
from questlog.modules.xp.grant_service import XpGrantService

logger = get_logger(__name__)

DOMAIN_EVENTS = (
    "xp.granted",
    "xp.reversed",
    "progression.leveled_up",
    "journal.finalized",
    "task.completed",
    "quest.completed",
    "family.interaction_recorded",
)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Re-read the environment now that the test defaults are in place."""
    Config.validate(force=True)


@pytest.fixture(autouse=True)
def isolated_config() -> Generator[None, None, None]:
    """Every test starts from the YAML defaults with no overrides."""
    ConfigManager.reset()
    yield
    ConfigManager.reset()
    clear_log_context()


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """
    Initialize DatabaseService on a fresh SQLite file with the full schema.

    Scope: function (one database file per test)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'questlog.db'}"
    await DatabaseService.shutdown()
    await DatabaseService.initialize(url)
    await DatabaseService.create_schema()

    yield url

    await DatabaseService.shutdown()


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start a PostgreSQL testcontainer.

    Skips when testcontainers or Docker is unavailable.
    """
    postgres = pytest.importorskip("testcontainers.postgres")

    try:
        container = postgres.PostgresContainer(image="postgres:16-alpine", driver="asyncpg")
        container.start()
    except Exception as exc:  # no docker daemon
        pytest.skip(f"PostgreSQL testcontainer unavailable: {exc}")

    logger.info("PostgreSQL testcontainer started")
    yield container

    container.stop()


@pytest_asyncio.fixture
async def postgres_database(postgres_container) -> AsyncGenerator[str, None]:
    """DatabaseService on the shared container, schema recreated per test."""
    url = postgres_container.get_connection_url()
    await DatabaseService.shutdown()
    await DatabaseService.initialize(url)
    await DatabaseService.drop_schema()
    await DatabaseService.create_schema()

    yield url

    await DatabaseService.shutdown()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(ConfigManager)


@pytest.fixture
def recorded_events(event_bus) -> List[Tuple[str, Dict[str, Any]]]:
    """Every event published on `event_bus`, in order."""
    events: List[Tuple[str, Dict[str, Any]]] = []

    def _recorder(event_name: str):
        async def _record(payload: Dict[str, Any]) -> None:
            events.append((event_name, dict(payload)))

        return _record

    for event_name in DOMAIN_EVENTS:
        event_bus.subscribe(
            event_name, _recorder(event_name), identifier=f"test-recorder-{event_name}"
        )
    return events


@pytest_asyncio.fixture
async def container(database, event_bus) -> AsyncGenerator[ServiceContainer, None]:
    """Fully wired ServiceContainer on the per-test SQLite database."""
    services = ServiceContainer(
        config_manager=ConfigManager,
        event_bus=event_bus,
        logger=get_logger("tests.container"),
    )
    await services.initialize()

    yield services

    await services.shutdown()


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """Mock EventBus; `publish` is awaitable."""
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock()
    mock_bus.subscribe = mocker.MagicMock()
    mock_bus.drain = mocker.AsyncMock()
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """Mock ConfigManager that returns each key's default."""
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return mock_config


@pytest.fixture
def crash_on_grant(mocker):
    """
    Make the n-th `XpGrantService._apply_one` call raise.

    Earlier calls run for real, so their rows are already flushed when the
    crash happens.
    """

    def _install(call_number: int) -> Dict[str, int]:
        real_apply = XpGrantService._apply_one
        calls = {"count": 0}

        async def _apply_one(self, session, **kwargs):
            calls["count"] += 1
            if calls["count"] == call_number:
                raise RuntimeError("connection lost while writing the ledger")
            return await real_apply(self, session, **kwargs)

        mocker.patch.object(XpGrantService, "_apply_one", _apply_one)
        return calls

    return _install


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def other_user_id() -> str:
    return f"other-{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def stat(container, user_id):
    return await container.stats.create_stat(
        user_id, "Strength", description="Physical power", example_activities=["Running"]
    )


@pytest_asyncio.fixture
async def member(container, user_id):
    return await container.family.create_member(user_id, "Mom", relationship="mother")
