"""The emission loop: one query-execute-and-drain pass.

Per cycle:
1. Ask the query provider for a query (it sees the checkpoint).
2. Execute it on the operator's connection.
3. For every row in cursor order: convert, emit, then record the
   checkpoint. The checkpoint is only touched after ``emit`` returns, so
   it always reflects a tuple that was actually delivered.

A failure while executing the query or reading rows closes the
connection before the error propagates. Nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from pollsource.lib.checkpoint import CheckpointState, utc_now
from pollsource.lib.connections import DEFAULT_FETCH_SIZE, Row, StoreConnection
from pollsource.lib.converters import RowConverter
from pollsource.lib.errors import ConfigurationError, ConversionError, QueryExecutionError
from pollsource.lib.ports import OutputPort
from pollsource.lib.queries import Query, QueryProvider

logger = logging.getLogger(__name__)

__all__ = ["PollCycleResult", "run_poll_cycle"]


@dataclass
class PollCycleResult:
    """Outcome of one poll cycle."""

    query: Optional[Query] = None
    rows_emitted: int = 0
    stopped_early: bool = False


def _resolve_query(provider: QueryProvider, checkpoint: CheckpointState) -> Query:
    try:
        query = provider.query_to_retrieve_data(checkpoint)
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Query provider failed: {exc}",
            details={"provider": type(provider).__name__},
        ) from exc

    if isinstance(query, str):
        query = Query(query)
    if not isinstance(query, Query) or not query.sql.strip():
        raise ConfigurationError(
            "Query provider returned no query",
            details={"provider": type(provider).__name__, "returned": repr(query)},
        )
    return query


def _convert(converter: RowConverter, row: Row, row_number: int) -> Any:
    try:
        return converter.row_to_tuple(row)
    except ConversionError:
        raise
    except Exception as exc:
        raise ConversionError(
            f"Could not convert row {row_number}",
            row_number=row_number,
            row=row,
            cause=exc,
        ) from exc


def run_poll_cycle(
    connection: StoreConnection,
    query_provider: QueryProvider,
    row_converter: RowConverter,
    output: OutputPort,
    state: CheckpointState,
    *,
    clock: Callable[[], Any] = utc_now,
    fetch_size: int = DEFAULT_FETCH_SIZE,
    should_stop: Optional[Callable[[], bool]] = None,
) -> PollCycleResult:
    """Run one poll cycle and return how many tuples were emitted.

    Args:
        connection: Open connection owned by the calling operator
        query_provider: Supplies this cycle's query
        row_converter: Turns each row into a tuple
        output: Port receiving the tuples, may block
        state: Checkpoint updated after each successful emit
        clock: Timestamp source for the checkpoint
        fetch_size: Rows fetched per driver round trip (no emission batching)
        should_stop: Polled before the query and after each row; when it
            returns True the cycle ends after the current row

    Raises:
        ConfigurationError: Provider could not produce a query
        QueryExecutionError: Store failed the query; connection is closed
        ConversionError: A row could not be converted; earlier rows stay emitted
    """
    result = PollCycleResult()
    if should_stop is not None and should_stop():
        result.stopped_early = True
        return result

    query = _resolve_query(query_provider, state)
    result.query = query
    logger.debug("select statement: %s", query.sql)

    rows: Iterator[Row] = iter(())
    try:
        rows = iter(connection.execute(query, fetch_size))
        for row in rows:
            tuple_ = _convert(row_converter, row, result.rows_emitted + 1)
            output.emit(tuple_)
            state.record(tuple_, clock())
            result.rows_emitted += 1

            if should_stop is not None and should_stop():
                result.stopped_early = True
                break
    except QueryExecutionError as exc:
        exc.rows_emitted = result.rows_emitted
        exc.add_detail("rows_emitted", result.rows_emitted)
        logger.debug(
            "Query failed after %d rows, closing connection: %s",
            result.rows_emitted,
            query.sql,
        )
        connection.close()
        raise
    finally:
        close_rows = getattr(rows, "close", None)
        if close_rows is not None:
            close_rows()

    logger.debug(
        "Poll cycle emitted %d tuples%s",
        result.rows_emitted,
        " (stopped early)" if result.stopped_early else "",
    )
    return result
