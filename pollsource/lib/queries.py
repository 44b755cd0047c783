"""Query providers: what to run on each poll cycle.

A provider is asked for a query once per poll cycle. It receives the
operator's checkpoint so it *may* narrow the query to rows not yet
emitted, but only ``IncrementalQueryProvider`` does so. The others issue
the same query every cycle; after a restart they will re-read rows that
were already delivered unless the query itself filters them.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence, Union

from pollsource.lib.errors import ConfigurationError

if TYPE_CHECKING:
    from pollsource.lib.checkpoint import CheckpointState

__all__ = [
    "Query",
    "QueryProvider",
    "StaticQueryProvider",
    "TableQueryProvider",
    "IncrementalQueryProvider",
    "CallableQueryProvider",
    "as_query_provider",
    "placeholder_for",
]

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class Query:
    """SQL text plus bound parameters."""

    sql: str
    params: Any = ()

    def __str__(self) -> str:
        return self.sql


def _check_identifier(name: str, field: str) -> str:
    if not name or not IDENTIFIER_PATTERN.match(name):
        raise ConfigurationError(
            f"Invalid SQL identifier for {field}: {name!r}",
            field=field,
            value=name,
        )
    return name


def placeholder_for(paramstyle: str, name: str = "cursor") -> str:
    """Return the bind placeholder for a DB-API paramstyle."""
    if paramstyle == "qmark":
        return "?"
    if paramstyle == "numeric":
        return ":1"
    if paramstyle == "named":
        return f":{name}"
    if paramstyle == "format":
        return "%s"
    if paramstyle == "pyformat":
        return f"%({name})s"
    raise ConfigurationError(f"Unsupported paramstyle: {paramstyle}", field="paramstyle")


class QueryProvider(ABC):
    """Produces the query for the current poll cycle.

    Implementations must not touch the store and must not depend on
    operator state other than the checkpoint they are handed.
    """

    @abstractmethod
    def query_to_retrieve_data(self, checkpoint: "CheckpointState") -> Union[Query, str]:
        """Return the query to run for this cycle.

        Raises:
            ConfigurationError: If no valid query can be produced
        """
        raise NotImplementedError()


class StaticQueryProvider(QueryProvider):
    """Always runs the same SQL."""

    def __init__(self, sql: str, params: Any = ()) -> None:
        if not sql or not sql.strip():
            raise ConfigurationError("Query text must not be empty", field="query")
        self._query = Query(sql.strip(), params)

    def query_to_retrieve_data(self, checkpoint: "CheckpointState") -> Query:
        return self._query


class TableQueryProvider(QueryProvider):
    """Selects a whole table, optionally restricted to columns and ordered."""

    def __init__(
        self,
        table_name: str,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[str]] = None,
    ) -> None:
        self.table_name = _check_identifier(table_name, "table_name")
        self.columns = [_check_identifier(c, "columns") for c in (columns or [])]
        self.order_by = [_check_identifier(c, "order_by") for c in (order_by or [])]

    def query_to_retrieve_data(self, checkpoint: "CheckpointState") -> Query:
        select = ", ".join(self.columns) if self.columns else "*"
        sql = f"SELECT {select} FROM {self.table_name}"
        if self.order_by:
            sql += " ORDER BY " + ", ".join(self.order_by)
        return Query(sql)


def _cursor_value(tuple_: Any, column: Union[str, int]) -> Any:
    """Read the cursor column out of an emitted tuple."""
    if isinstance(tuple_, Mapping):
        return tuple_.get(column)
    if isinstance(tuple_, (str, bytes)):
        return None
    if hasattr(tuple_, "__getitem__"):
        try:
            return tuple_[column]
        except (KeyError, IndexError, TypeError):
            pass
    if isinstance(column, str):
        return getattr(tuple_, column, None)
    return None


class IncrementalQueryProvider(QueryProvider):
    """Resumes after the last emitted tuple using a monotonically increasing column.

    Results are ordered by the cursor column so the checkpoint always holds
    the highest value delivered so far. ``cursor_column`` is the key (or
    position) of that column in the emitted tuple; set ``scalar_tuple`` when
    the converter emits the cursor value itself.

    A ``base_query`` is wrapped as a derived table aliased without ``AS``,
    which every supported dialect accepts. Literal ``%`` in it is doubled
    once a parameter is bound under the ``format``/``pyformat`` styles.

    Example:
        provider = IncrementalQueryProvider("updated_at", table_name="orders")
        # first cycle:  SELECT * FROM orders ORDER BY updated_at
        # later cycles: SELECT * FROM orders WHERE updated_at > ? ORDER BY updated_at
    """

    def __init__(
        self,
        cursor_column: Union[str, int],
        *,
        base_query: Optional[str] = None,
        table_name: Optional[str] = None,
        paramstyle: str = "qmark",
        sql_column: Optional[str] = None,
        scalar_tuple: bool = False,
    ) -> None:
        if base_query is None and table_name is None:
            raise ConfigurationError(
                "Incremental queries need either base_query or table_name",
                field="base_query",
            )
        self.cursor_column = cursor_column
        # column name in SQL may differ from the key in the converted tuple
        self.sql_column = _check_identifier(
            sql_column or str(cursor_column), "cursor_column"
        )
        self.base_query = base_query.strip().rstrip(";") if base_query else None
        self.table_name = _check_identifier(table_name, "table_name") if table_name else None
        self.paramstyle = paramstyle
        self.scalar_tuple = scalar_tuple
        self._placeholder = placeholder_for(paramstyle)

    def _source(self, bound: bool = False) -> str:
        if not self.base_query:
            return f"SELECT * FROM {self.table_name}"
        base = self.base_query
        if bound and self.paramstyle in ("format", "pyformat"):
            base = base.replace("%", "%%")
        return f"SELECT * FROM ({base}) _src"

    def _params(self, value: Any) -> Any:
        if self.paramstyle in ("named", "pyformat"):
            return {"cursor": value}
        return (value,)

    def query_to_retrieve_data(self, checkpoint: "CheckpointState") -> Query:
        order = f" ORDER BY {self.sql_column}"
        if checkpoint.is_empty:
            return Query(self._source() + order)

        last = checkpoint.last_emitted_tuple
        value = last if self.scalar_tuple else _cursor_value(last, self.cursor_column)
        if value is None:
            raise ConfigurationError(
                "Last emitted tuple has no value for the cursor column",
                field="cursor_column",
                value=self.cursor_column,
                suggestion="Make the row converter keep the cursor column in each tuple.",
            )
        sql = f"{self._source(bound=True)} WHERE {self.sql_column} > {self._placeholder}{order}"
        return Query(sql, self._params(value))


class CallableQueryProvider(QueryProvider):
    """Adapts ``fn(checkpoint) -> Query | str``."""

    def __init__(self, fn: Callable[["CheckpointState"], Union[Query, str]]) -> None:
        self.fn = fn

    def query_to_retrieve_data(self, checkpoint: "CheckpointState") -> Union[Query, str]:
        return self.fn(checkpoint)


def as_query_provider(
    value: Union[QueryProvider, Query, str, Callable[["CheckpointState"], Union[Query, str]]],
) -> QueryProvider:
    """Coerce a provider, SQL string, Query, or callable into a QueryProvider."""
    if isinstance(value, QueryProvider):
        return value
    if isinstance(value, Query):
        return StaticQueryProvider(value.sql, value.params)
    if isinstance(value, str):
        return StaticQueryProvider(value)
    if callable(value):
        return CallableQueryProvider(value)
    raise ConfigurationError(
        f"Cannot build a query provider from {type(value).__name__}",
        field="query_provider",
    )
