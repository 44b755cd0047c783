"""Pytest configuration and fixtures."""

import sqlite3
import sys
import types
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pollsource.lib.config import SourceConfig  # noqa: E402

ORDERS = [
    (1, "alpha", 10.5),
    (2, "beta", 20.0),
    (3, "gamma", 30.25),
]


@pytest.fixture
def orders_db(tmp_path: Path) -> Path:
    """SQLite database with a three-row orders table."""
    path = tmp_path / "orders.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE orders (id INTEGER PRIMARY KEY, name TEXT, amount REAL)")
    conn.executemany("INSERT INTO orders VALUES (?, ?, ?)", ORDERS)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def add_order(orders_db: Path):
    """Insert another row into the orders table."""

    def _add(order_id: int, name: str, amount: float) -> None:
        conn = sqlite3.connect(orders_db)
        conn.execute("INSERT INTO orders VALUES (?, ?, ?)", (order_id, name, amount))
        conn.commit()
        conn.close()

    return _add


@pytest.fixture
def orders_config(orders_db: Path) -> SourceConfig:
    return SourceConfig(store_url=str(orders_db), driver="sqlite3", table_name="orders")


class FakeClock:
    """Deterministic clock advancing a fixed step per call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        self.step = step
        self.calls = 0

    def __call__(self) -> datetime:
        value = self.now
        self.now = self.now + self.step
        self.calls += 1
        return value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeCursor:
    """DB-API cursor returning canned rows, optionally failing part way."""

    def __init__(self, db: "FakeDatabase") -> None:
        self.db = db
        self.description: Optional[List[Tuple[str]]] = None
        self.executed: List[Tuple[str, Any]] = []
        self.closed = False
        self._rows: List[Sequence[Any]] = []
        self._served = 0

    def execute(self, sql: str, params: Any = None) -> None:
        self.executed.append((sql, params))
        self.db.queries.append((sql, params))
        if self.db.execute_error is not None:
            raise self.db.execute_error
        self.description = [(name,) for name in self.db.columns]
        self._rows = list(self.db.rows)
        self._served = 0

    def fetchmany(self, size: int) -> List[Sequence[Any]]:
        fail_after = self.db.fail_after
        if fail_after is not None and self._served >= fail_after:
            raise self.db.fetch_error
        end = self._served + size
        if fail_after is not None:
            end = min(end, fail_after)
        batch = self._rows[self._served:end]
        self._served += len(batch)
        return batch

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, db: "FakeDatabase") -> None:
        self.db = db
        self.closed = False
        self.cursors: List[FakeCursor] = []

    def cursor(self) -> FakeCursor:
        if self.db.cursor_error is not None:
            raise self.db.cursor_error
        cursor = FakeCursor(self.db)
        self.cursors.append(cursor)
        return cursor

    def close(self) -> None:
        self.closed = True
        self.db.close_calls += 1


class FakeDatabase:
    """Backing state for the ``fakedb`` driver module."""

    def __init__(self) -> None:
        self.columns: List[str] = ["id", "name"]
        self.rows: List[Sequence[Any]] = [(1, "r1"), (2, "r2"), (3, "r3")]
        self.connect_error: Optional[Exception] = None
        self.cursor_error: Optional[Exception] = None
        self.execute_error: Optional[Exception] = None
        self.fetch_error: Exception = RuntimeError("connection reset by peer")
        self.fail_after: Optional[int] = None
        self.connections: List[FakeConnection] = []
        self.connect_args: List[Tuple[Any, ...]] = []
        self.queries: List[Tuple[str, Any]] = []
        self.close_calls = 0

    def connect(self, *args: Any, **kwargs: Any) -> FakeConnection:
        self.connect_args.append((args, kwargs))
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeDatabase:
    """Install an in-memory DB-API driver importable as ``fakedb``."""
    db = FakeDatabase()
    module = types.ModuleType("fakedb")
    module.connect = db.connect  # type: ignore[attr-defined]
    module.paramstyle = "qmark"  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "fakedb", module)
    return db


@pytest.fixture
def fake_config() -> SourceConfig:
    return SourceConfig(store_url="fake://store", driver="fakedb", table_name="events")
