"""Tests for pollsource.lib.connections module."""

import sqlite3
import types
from unittest.mock import MagicMock

import pytest

from pollsource.lib.connections import (
    Row,
    StoreConnection,
    connect,
    redact_url,
    resolve_driver,
)
from pollsource.lib.errors import ConfigurationError, ConnectionError, QueryExecutionError
from pollsource.lib.queries import Query


# ============================================
# Driver resolution
# ============================================


class TestResolveDriver:
    def test_imports_module_by_name(self):
        assert resolve_driver("sqlite3") is sqlite3

    def test_alias(self):
        assert resolve_driver("sqlite") is sqlite3

    def test_missing_driver_raises_configuration_error(self):
        with pytest.raises(ConfigurationError, match="not installed"):
            resolve_driver("no_such_driver_module_xyz")

    def test_module_without_connect_rejected(self):
        with pytest.raises(ConfigurationError, match="not a DB-API driver"):
            resolve_driver("json")

    def test_empty_identifier_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_driver("")


class TestConnect:
    def _module(self, name):
        module = types.ModuleType(name)
        module.connect = MagicMock(return_value="conn")
        return module

    def test_pyodbc_credentials_appended_to_connection_string(self):
        module = self._module("pyodbc")

        connect(module, "DRIVER={ODBC};SERVER=db;", user="etl", password="s3cret")

        module.connect.assert_called_once_with("DRIVER={ODBC};SERVER=db;UID=etl;PWD=s3cret")

    def test_sqlite_strips_url_prefix(self):
        module = self._module("sqlite3")

        connect(module, "sqlite:///data/orders.db")

        module.connect.assert_called_once_with("data/orders.db")

    def test_other_drivers_get_keyword_credentials(self):
        module = self._module("psycopg2")

        connect(module, "dbname=sales host=db", user="etl", password="pw")

        module.connect.assert_called_once_with("dbname=sales host=db", user="etl", password="pw")


class TestRedactUrl:
    def test_odbc_password(self):
        assert redact_url("SERVER=db;UID=me;PWD=hunter2;") == "SERVER=db;UID=me;PWD=***;"

    def test_url_password(self):
        assert redact_url("postgresql://me:hunter2@db/sales") == "postgresql://me:***@db/sales"

    def test_no_password_unchanged(self):
        assert redact_url("orders.db") == "orders.db"


# ============================================
# Row
# ============================================


class TestRow:
    def test_access_by_index_and_label(self):
        row = Row(["id", "name"], (7, "x"))

        assert row[0] == 7
        assert row["name"] == "x"
        assert len(row) == 2
        assert list(row) == [7, "x"]

    def test_unknown_label_raises_key_error(self):
        row = Row(["id"], (1,))

        with pytest.raises(KeyError, match="missing"):
            row["missing"]

    def test_get_with_default(self):
        row = Row(["id"], (1,))

        assert row.get("missing", "d") == "d"
        assert row.get(5) is None

    def test_as_dict_and_equality(self):
        row = Row(["id", "name"], (1, "a"))

        assert row.as_dict() == {"id": 1, "name": "a"}
        assert row == Row(["id", "name"], [1, "a"])
        assert row != Row(["id", "name"], (2, "a"))


# ============================================
# StoreConnection
# ============================================


class TestStoreConnectionLifecycle:
    def test_open_is_idempotent(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb")

        conn.open()
        conn.open()

        assert conn.is_open
        assert len(fake_db.connections) == 1

    def test_open_failure_raises_connection_error(self, fake_db):
        fake_db.connect_error = RuntimeError("host unreachable")
        conn = StoreConnection("fake://u:pw@store", "fakedb")

        with pytest.raises(ConnectionError) as exc_info:
            conn.open()

        assert not conn.is_open
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert "pw" not in exc_info.value.details["url"]

    def test_prepare_failure_closes_connection(self, fake_db):
        fake_db.cursor_error = RuntimeError("no cursor for you")
        conn = StoreConnection("fake://store", "fakedb").open()

        with pytest.raises(ConnectionError, match="cursor"):
            conn.prepare()

        assert not conn.is_open
        assert fake_db.connections[0].closed

    def test_prepare_on_closed_connection_raises(self, fake_db):
        with pytest.raises(ConnectionError):
            StoreConnection("fake://store", "fakedb").prepare()

    def test_close_is_safe_to_repeat(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb").open()
        conn.prepare()

        conn.close()
        conn.close()

        assert not conn.is_open
        assert fake_db.close_calls == 1
        assert fake_db.connections[0].cursors[0].closed

    def test_close_before_open_is_noop(self):
        StoreConnection("nowhere", "sqlite3").close()

    def test_close_swallows_driver_errors(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb").open()
        fake_db.connections[0].close = MagicMock(side_effect=RuntimeError("already gone"))

        conn.close()

        assert not conn.is_open

    def test_context_manager(self, fake_db):
        with StoreConnection("fake://store", "fakedb") as conn:
            assert conn.is_open
        assert not conn.is_open

    def test_paramstyle_from_driver(self):
        assert StoreConnection(":memory:", "sqlite3").paramstyle == "qmark"


class TestStoreConnectionExecute:
    def test_yields_rows_in_cursor_order(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb").open()

        rows = list(conn.execute("SELECT * FROM events", fetch_size=2))

        assert [r["id"] for r in rows] == [1, 2, 3]
        assert rows[0].columns == ("id", "name")

    def test_reuses_prepared_cursor(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb").open()
        conn.prepare()

        list(conn.execute("SELECT 1"))
        list(conn.execute("SELECT 2"))

        assert len(fake_db.connections[0].cursors) == 1

    def test_passes_params(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb").open()

        list(conn.execute(Query("SELECT * FROM events WHERE id > ?", (1,))))

        assert fake_db.queries[-1] == ("SELECT * FROM events WHERE id > ?", (1,))

    def test_execute_failure_raises_query_execution_error(self, fake_db):
        fake_db.execute_error = RuntimeError("syntax error")
        conn = StoreConnection("fake://store", "fakedb").open()

        with pytest.raises(QueryExecutionError) as exc_info:
            list(conn.execute("SELEC nonsense"))

        assert exc_info.value.query == "SELEC nonsense"

    def test_fetch_failure_raises_query_execution_error(self, fake_db):
        fake_db.fail_after = 1
        conn = StoreConnection("fake://store", "fakedb").open()
        seen = []

        with pytest.raises(QueryExecutionError, match="reading query results"):
            for row in conn.execute("SELECT * FROM events"):
                seen.append(row["id"])

        assert seen == [1]

    def test_execute_on_closed_connection(self, fake_db):
        conn = StoreConnection("fake://store", "fakedb")

        with pytest.raises(QueryExecutionError, match="closed"):
            list(conn.execute("SELECT 1"))

    def test_statement_without_result_set_yields_nothing(self, tmp_path):
        conn = StoreConnection(str(tmp_path / "x.db"), "sqlite3").open()

        assert list(conn.execute("CREATE TABLE t (id INTEGER)")) == []
        conn.close()

    def test_sqlite_round_trip(self, orders_db):
        with StoreConnection(str(orders_db), "sqlite3") as conn:
            rows = list(conn.execute("SELECT id, name FROM orders ORDER BY id", fetch_size=1))

        assert [r.as_dict() for r in rows] == [
            {"id": 1, "name": "alpha"},
            {"id": 2, "name": "beta"},
            {"id": 3, "name": "gamma"},
        ]
