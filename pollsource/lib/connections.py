"""Connection lifecycle for the external store.

A ``StoreConnection`` is owned by exactly one operator instance; there
is no registry and no sharing between instances. Any DB-API 2.0 driver
module can back it. Drivers are imported lazily so a deployment only
needs the one it actually uses.
"""

from __future__ import annotations

import importlib
import logging
import re
from types import ModuleType
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from pollsource.lib.errors import ConfigurationError, ConnectionError, QueryExecutionError
from pollsource.lib.queries import Query

logger = logging.getLogger(__name__)

__all__ = ["Row", "StoreConnection", "connect", "redact_url", "resolve_driver"]

# Common aliases for driverIdentifier values
DRIVER_ALIASES: Dict[str, str] = {
    "odbc": "pyodbc",
    "mssql": "pymssql",
    "sqlite": "sqlite3",
    "postgres": "psycopg2",
    "postgresql": "psycopg2",
}

DEFAULT_FETCH_SIZE = 1000

_SECRET_PATTERNS = (
    re.compile(r"(?i)\b(pwd|password)=([^;]*)"),
    re.compile(r"(://[^:/@]+:)([^@]*)(@)"),
)


def redact_url(url: str) -> str:
    """Hide passwords in ODBC-style and URL-style connection strings."""
    redacted = _SECRET_PATTERNS[0].sub(lambda m: f"{m.group(1)}***", url)
    return _SECRET_PATTERNS[1].sub(lambda m: f"{m.group(1)}***{m.group(3)}", redacted)


def resolve_driver(identifier: str) -> ModuleType:
    """Import the DB-API module named by a driver identifier.

    Args:
        identifier: Module name or alias (``pyodbc``, ``sqlite``, ``postgres``...)

    Returns:
        The imported driver module

    Raises:
        ConfigurationError: If the module is missing or is not a DB-API driver
    """
    if not identifier:
        raise ConfigurationError("A driver identifier is required", field="driver")

    module_name = DRIVER_ALIASES.get(identifier.lower(), identifier)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(
            f"Database driver '{module_name}' is not installed",
            field="driver",
            value=identifier,
            suggestion=f"Install with: pip install {module_name}",
        ) from exc

    if not callable(getattr(module, "connect", None)):
        raise ConfigurationError(
            f"Module '{module_name}' is not a DB-API driver (no connect())",
            field="driver",
            value=identifier,
        )
    return module


def connect(
    module: ModuleType,
    url: str,
    *,
    user: Optional[str] = None,
    password: Optional[str] = None,
    **kwargs: Any,
) -> Any:
    """Open a raw DB-API connection, passing credentials the way each driver expects."""
    name = module.__name__

    if name == "pyodbc":
        parts = [url.rstrip(";")]
        if user:
            parts.append(f"UID={user}")
        if password:
            parts.append(f"PWD={password}")
        return module.connect(";".join(parts), **kwargs)

    if name == "sqlite3":
        path = url[len("sqlite:///"):] if url.startswith("sqlite:///") else url
        return module.connect(path, **kwargs)

    if user is not None:
        kwargs["user"] = user
    if password is not None:
        kwargs["password"] = password
    return module.connect(url, **kwargs)


class Row:
    """One result row, readable by position or by column label."""

    __slots__ = ("_columns", "_values", "_index")

    def __init__(self, columns: Sequence[str], values: Sequence[Any]) -> None:
        self._columns = tuple(columns)
        self._values = tuple(values)
        self._index = {name: i for i, name in enumerate(self._columns)}

    @property
    def columns(self) -> Tuple[str, ...]:
        return self._columns

    @property
    def values(self) -> Tuple[Any, ...]:
        return self._values

    def __getitem__(self, key: Union[int, str]) -> Any:
        if isinstance(key, str):
            try:
                return self._values[self._index[key]]
            except KeyError:
                raise KeyError(f"No column named '{key}' (columns: {list(self._columns)})") from None
        return self._values[key]

    def get(self, key: Union[int, str], default: Any = None) -> Any:
        try:
            return self[key]
        except (KeyError, IndexError):
            return default

    def as_dict(self) -> Dict[str, Any]:
        return dict(zip(self._columns, self._values))

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self._columns == other._columns and self._values == other._values

    def __repr__(self) -> str:
        return f"Row({self.as_dict()!r})"


class StoreConnection:
    """Connection handle to the external store.

    Lifecycle:
        open() -> prepare() -> execute()* -> close()

    ``open`` is idempotent, ``close`` is safe to call any number of times
    and never raises.

    Example:
        >>> conn = StoreConnection(":memory:", "sqlite3")
        >>> conn.open().prepare()
        >>> rows = list(conn.execute("SELECT 1 AS one"))
        >>> rows[0]["one"]
        1
        >>> conn.close()
    """

    def __init__(
        self,
        url: str,
        driver: str,
        *,
        user: Optional[str] = None,
        password: Optional[str] = None,
        connect_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.driver = driver
        self.user = user
        self._password = password
        self.connect_options = dict(connect_options or {})
        self._module: Optional[ModuleType] = None
        self._conn: Any = None
        self._cursor: Any = None

    @property
    def module(self) -> ModuleType:
        if self._module is None:
            self._module = resolve_driver(self.driver)
        return self._module

    @property
    def paramstyle(self) -> str:
        return getattr(self.module, "paramstyle", "qmark")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def safe_url(self) -> str:
        return redact_url(self.url)

    def open(self) -> "StoreConnection":
        """Acquire the connection.

        Raises:
            ConfigurationError: If the driver cannot be loaded
            ConnectionError: If the store is unreachable or rejects credentials
        """
        if self._conn is not None:
            logger.debug("Connection to %s already open, reusing", self.safe_url)
            return self

        module = self.module
        logger.info("Opening %s connection to %s", module.__name__, self.safe_url)
        try:
            self._conn = connect(
                module,
                self.url,
                user=self.user,
                password=self._password,
                **self.connect_options,
            )
        except Exception as exc:
            raise ConnectionError(
                "Could not connect to store",
                url=self.safe_url,
                driver=module.__name__,
                cause=exc,
            ) from exc
        return self

    def prepare(self) -> None:
        """Create the reusable query-execution cursor.

        A failure here closes the connection before raising.
        """
        if self._conn is None:
            raise ConnectionError("Cannot prepare a cursor on a closed connection")
        if self._cursor is not None:
            return
        try:
            self._cursor = self._conn.cursor()
        except Exception as exc:
            self.close()
            raise ConnectionError(
                "Error while creating query cursor",
                url=self.safe_url,
                driver=self.driver,
                cause=exc,
            ) from exc

    def execute(
        self,
        query: Union[Query, str],
        fetch_size: int = DEFAULT_FETCH_SIZE,
    ) -> Iterator[Row]:
        """Run a query and lazily yield its rows in cursor order.

        Driver failures while executing or fetching surface as
        ``QueryExecutionError``. Closing the connection on failure is the
        caller's decision.
        """
        if isinstance(query, str):
            query = Query(query)
        if self._conn is None:
            raise QueryExecutionError("Connection is closed", query=query.sql)
        if self._cursor is None:
            self.prepare()

        cursor = self._cursor
        try:
            if query.params:
                cursor.execute(query.sql, query.params)
            else:
                cursor.execute(query.sql)
            description = cursor.description
        except Exception as exc:
            raise QueryExecutionError(
                "Error while running query", query=query.sql, cause=exc
            ) from exc

        if not description:
            return
        columns: List[str] = [col[0] for col in description]

        while True:
            try:
                batch = cursor.fetchmany(fetch_size)
            except Exception as exc:
                raise QueryExecutionError(
                    "Error while reading query results", query=query.sql, cause=exc
                ) from exc
            if not batch:
                break
            for values in batch:
                yield Row(columns, values)

    def close(self) -> None:
        """Release the cursor and connection. Never raises."""
        cursor, self._cursor = self._cursor, None
        conn, self._conn = self._conn, None

        if cursor is not None:
            try:
                cursor.close()
            except Exception as e:
                logger.warning("Error closing cursor for %s: %s", self.safe_url, e)

        if conn is None:
            return
        try:
            conn.close()
            logger.info("Closed connection to %s", self.safe_url)
        except Exception as e:
            logger.warning("Error closing connection to %s: %s", self.safe_url, e)

    def __enter__(self) -> "StoreConnection":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
