"""Shared fixtures: a file-backed SQLite database per test and a settable clock.

A file (not ``:memory:``) is used because every store operation opens its own
connection, and in-memory databases are private to a connection.
"""
import datetime
from pathlib import Path

import pytest

from expensebot.categories import CategoryRegistry
from expensebot.database import Database
from expensebot.flow import ExpenseFlow
from expensebot.ledger import Ledger
from expensebot.sessions import SessionStore

START = datetime.datetime(2025, 3, 14, 12, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(str(tmp_path / "data" / "expenses.db"))


@pytest.fixture
def registry(db: Database) -> CategoryRegistry:
    return CategoryRegistry(db)


@pytest.fixture
def sessions(db: Database, clock: FakeClock) -> SessionStore:
    return SessionStore(db, clock=clock)


@pytest.fixture
def ledger(db: Database) -> Ledger:
    return Ledger(db)


@pytest.fixture
def flow(db, registry, sessions, ledger, clock) -> ExpenseFlow:
    return ExpenseFlow(db, registry, sessions, ledger, clock=clock)
