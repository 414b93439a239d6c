"""Shared fixtures for snapflow tests."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from snapflow.snapshot import InMemorySnapshotTableStore, SnapshotConfig, SQLSnapshotTableStore


def sqlite_engine():
    """In-memory SQLite engine shared by every connection of a test."""
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def engine():
    engine = sqlite_engine()
    yield engine
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Snapshot store for the ``customers`` target, once per backend."""
    if request.param == "memory":
        yield InMemorySnapshotTableStore("customers")
        return

    engine = sqlite_engine()
    yield SQLSnapshotTableStore(engine, target="customers")
    engine.dispose()


@pytest.fixture
def config():
    return SnapshotConfig(
        target="customers",
        unique_key=["id"],
        tracked_columns=["city"],
    )


@pytest.fixture
def hard_delete_config():
    return SnapshotConfig(
        target="customers",
        unique_key=["id"],
        tracked_columns=["city"],
        invalidate_hard_deletes=True,
    )
