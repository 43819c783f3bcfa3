"""Shared test fixtures."""

import sqlite3
from collections.abc import Iterator

import pytest

from strata.models.operation import Create, Move, Operation, Tombstone, UpdateText
from strata.session import Session
from strata.storage.sqlite_store import SqliteStore
from tests.unit.fakes import FakeClock, FakeStore, make_op


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def session(store: FakeStore, clock: FakeClock) -> Session:
    """Session over an empty FakeStore with a controllable clock."""
    return Session.open(store, client_id="client-a", now_ms=clock.ms, clock=clock)


@pytest.fixture
def sqlite_store() -> Iterator[SqliteStore]:
    store = SqliteStore(sqlite3.connect(":memory:"))
    yield store
    store.close()


@pytest.fixture
def sample_ops() -> list[Operation]:
    """A small log: two roots, a child, edits, a delete and a rejected move."""
    return [
        make_op(1, Create("a", None, "i", text="Alpha")),
        make_op(2, Create("b", None, "r", text="Beta")),
        make_op(3, Create("c", "a", "i", text="Child")),
        make_op(4, UpdateText("c", "Child, edited")),
        make_op(5, Tombstone("b")),
        make_op(6, Create("d", "c", "i", text="Grandchild", tags=("x", "y"))),
        make_op(7, UpdateText("a", "Alpha\nwith a body")),
        make_op(8, Move("a", "d", "r")),
    ]
