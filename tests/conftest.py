"""Shared pytest fixtures for registry and pipeline testing.

Registries:
    memory_registry: InMemoryTaskRegistry
    sql_registry: SqlTaskRegistry over in-memory SQLite (aiosqlite)

Pipeline:
    recording_sleep: replaces asyncio.sleep in backoff waits
    fast_settings: PipelineSettings with tiny backoff
"""

import pytest
import pytest_asyncio

from shortforge.config import PipelineSettings
from shortforge.database import create_all, create_test_engine
from shortforge.services.task_registry import InMemoryTaskRegistry, SqlTaskRegistry
from tests.support.fakes import RecordingSleep


@pytest.fixture
def memory_registry() -> InMemoryTaskRegistry:
    return InMemoryTaskRegistry()


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine with all tables created.

    Yields:
        Tuple of (engine, session_factory).
    """
    engine, session_factory = create_test_engine()
    await create_all(engine)
    yield engine, session_factory
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_registry(async_engine) -> SqlTaskRegistry:
    _, session_factory = async_engine
    return SqlTaskRegistry(session_factory)


@pytest.fixture(params=["memory", "sql"])
def registry(request, memory_registry, sql_registry):
    """Run a test against both registry implementations."""
    return memory_registry if request.param == "memory" else sql_registry


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_settings() -> PipelineSettings:
    return PipelineSettings(max_retries=3, retry_base_delay=1.0)


@pytest.fixture(autouse=True)
def isolated_workspace(tmp_path, monkeypatch):
    """Point WORKSPACE_ROOT at a per-test directory."""
    monkeypatch.setenv("WORKSPACE_ROOT", str(tmp_path / "workspace"))
    return tmp_path / "workspace"
