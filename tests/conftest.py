"""Shared fixtures for capture tests."""

import threading
import uuid
from typing import List

import pytest
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, create_engine
from sqlalchemy.pool import StaticPool

from cdc_capture.datasources import register_datasource, unregister_datasource
from cdc_capture.models import ChangeEvent
from cdc_capture.registry import EngineRegistry


class EventCollector:
    """Consumer that records events and lets tests wait for them."""

    def __init__(self):
        self.events: List[ChangeEvent] = []
        self._condition = threading.Condition()

    def __call__(self, event: ChangeEvent) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: len(self.events) >= count, timeout=timeout)


@pytest.fixture
def collector():
    return EventCollector()


@pytest.fixture
def registry():
    return EngineRegistry()


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata = MetaData()
    Table(
        "students",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(50)),
    )
    Table(
        "orders",
        metadata,
        Column("order_id", Integer, primary_key=True),
        Column("status", String(20)),
        Column("updated_at", DateTime),
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def students(sqlite_engine):
    """Reflected students table bound to the test engine."""
    return Table("students", MetaData(), autoload_with=sqlite_engine)


@pytest.fixture
def orders(sqlite_engine):
    return Table("orders", MetaData(), autoload_with=sqlite_engine)


@pytest.fixture
def datasource(sqlite_engine):
    """Register the test engine as a shared datasource."""
    name = f"test-ds-{uuid.uuid4().hex[:8]}"
    register_datasource(name, sqlite_engine)
    yield name
    unregister_datasource(name)


def insert_rows(engine, table, rows):
    with engine.begin() as conn:
        conn.execute(table.insert(), rows)
