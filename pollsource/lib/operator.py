"""Polling source operator: lifecycle around the emission loop.

The engine drives the lifecycle::

    setup -> {begin_window -> emit_tuples* -> end_window}* -> teardown

and the operator drives data flow from the store to its output port.
One instance owns one connection and one checkpoint; nothing is shared
between instances and the operator never starts threads of its own.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Optional, Union

from pollsource.lib.checkpoint import CheckpointState, utc_now
from pollsource.lib.config import SourceConfig
from pollsource.lib.connections import StoreConnection
from pollsource.lib.context import OperatorContext
from pollsource.lib.converters import RowConverter, as_row_converter
from pollsource.lib.emission import run_poll_cycle
from pollsource.lib.errors import ConfigurationError, LifecycleError, SourceError
from pollsource.lib.logging import get_operator_logger
from pollsource.lib.ports import CallbackOutputPort, OutputPort
from pollsource.lib.queries import QueryProvider, as_query_provider

__all__ = ["LifecycleState", "PollingSourceOperator"]

ConnectionFactory = Callable[[SourceConfig], StoreConnection]


class LifecycleState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    WINDOW_OPEN = "window_open"
    WINDOW_CLOSED = "window_closed"
    TORN_DOWN = "torn_down"


def default_connection_factory(config: SourceConfig) -> StoreConnection:
    return StoreConnection(
        config.store_url,
        config.driver,
        user=config.user,
        password=config.password,
        connect_options=config.connect_options,
    )


class PollingSourceOperator:
    """Source operator that polls a SQL store and emits one tuple per row.

    The query provider and row converter are injected, so the loop can be
    exercised without a real store.

    Example:
        output = CollectingOutputPort()
        op = PollingSourceOperator(
            TableQueryProvider("orders"),
            DictRowConverter(),
            output,
            SourceConfig(store_url="orders.db", driver="sqlite3", table_name="orders"),
        )
        op.setup(OperatorContext("orders"))
        try:
            op.begin_window(1)
            op.emit_tuples()
            op.end_window()
        finally:
            op.teardown()
    """

    def __init__(
        self,
        query_provider: Union[QueryProvider, str, Callable[..., Any]],
        row_converter: Union[RowConverter, Callable[..., Any]],
        output: Union[OutputPort, Callable[[Any], None]],
        config: Optional[SourceConfig] = None,
        *,
        checkpoint: Optional[CheckpointState] = None,
        clock: Optional[Callable[[], Any]] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self.query_provider = as_query_provider(query_provider)
        self.row_converter = as_row_converter(row_converter)
        self.output = output if isinstance(output, OutputPort) else CallbackOutputPort(output)
        self._config = config
        self._checkpoint = checkpoint if checkpoint is not None else CheckpointState()
        self._clock = clock or utc_now
        self._connection_factory = connection_factory or default_connection_factory

        self._connection: Optional[StoreConnection] = None
        self._state = LifecycleState.UNINITIALIZED
        self._window_id: Optional[int] = None
        self._stop_requested = threading.Event()
        self._cycle_lock = threading.RLock()
        self._log = get_operator_logger(__name__, operator="source")

    # -- read-only views -------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def config(self) -> Optional[SourceConfig]:
        return self._config

    @property
    def checkpoint(self) -> CheckpointState:
        return self._checkpoint

    @property
    def last_emitted_tuple(self) -> Any:
        return self._checkpoint.last_emitted_tuple

    @property
    def last_emitted_timestamp(self) -> Any:
        return self._checkpoint.last_emitted_timestamp

    @property
    def current_window_id(self) -> Optional[int]:
        return self._window_id

    @property
    def connection(self) -> Optional[StoreConnection]:
        return self._connection

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    # -- lifecycle -------------------------------------------------------

    def setup(self, context: Optional[OperatorContext] = None) -> None:
        """Open the store connection and prepare the query cursor.

        Any failure leaves the operator torn down with the connection
        released, then propagates.

        Raises:
            ConfigurationError: No usable configuration or driver
            ConnectionError: Store unreachable or credentials rejected
            LifecycleError: Operator is already set up
        """
        if self._state not in (LifecycleState.UNINITIALIZED, LifecycleState.TORN_DOWN):
            raise LifecycleError("setup called twice", state=self._state.value)

        context = context or OperatorContext()
        if context.config is not None:
            self._config = context.config
        self._log.bind(operator=context.operator_id)
        self._stop_requested.clear()
        self._window_id = None

        try:
            if self._config is None:
                raise ConfigurationError(
                    "No source configuration supplied",
                    operator=context.operator_id,
                    suggestion="Pass config to the operator or set context.config.",
                )
            self._connection = self._connection_factory(self._config)
            self._connection.open()
            self._connection.prepare()
        except Exception as exc:
            self._log.error("Setup failed: %s", exc)
            self._release_connection()
            self._state = LifecycleState.TORN_DOWN
            raise

        self._state = LifecycleState.READY
        self._log.info("Setup complete for %s", self._config.display_name)

    def begin_window(self, window_id: int) -> None:
        if self._state in (LifecycleState.UNINITIALIZED, LifecycleState.TORN_DOWN):
            raise LifecycleError(
                f"begin_window({window_id}) outside setup/teardown",
                state=self._state.value,
            )
        self._window_id = window_id
        self._state = LifecycleState.WINDOW_OPEN
        self._log.bind(window_id=window_id)
        self._log.debug("Window %s opened", window_id)

    def end_window(self) -> None:
        if self._state is LifecycleState.WINDOW_OPEN:
            self._state = LifecycleState.WINDOW_CLOSED
            self._log.debug("Window %s closed", self._window_id)

    def emit_tuples(self) -> int:
        """Run one poll cycle and return the number of tuples emitted.

        Returns 0 without touching the store once teardown was requested.

        Raises:
            LifecycleError: Called before setup, or after a query failure
                already closed the connection
            ConfigurationError, QueryExecutionError, ConversionError:
                Fatal for this operator instance
        """
        if self._state is LifecycleState.UNINITIALIZED:
            raise LifecycleError("emit_tuples called before setup", state=self._state.value)

        with self._cycle_lock:
            if self._state is LifecycleState.TORN_DOWN or self._stop_requested.is_set():
                return 0

            connection = self._connection
            if connection is None or not connection.is_open:
                raise LifecycleError(
                    "Connection is closed; the operator needs teardown and setup",
                    state=self._state.value,
                )

            assert self._config is not None
            try:
                result = run_poll_cycle(
                    connection,
                    self.query_provider,
                    self.row_converter,
                    self.output,
                    self._checkpoint,
                    clock=self._clock,
                    fetch_size=self._config.batch_size,
                    should_stop=self._stop_requested.is_set,
                )
            except SourceError as exc:
                self._log.error("Poll cycle failed: %s", exc.message, extra={"error": exc.to_dict()})
                raise

        return result.rows_emitted

    def request_stop(self) -> None:
        """Ask an in-flight poll cycle to finish after its current row.

        Safe to call from any thread. No new cycle starts afterwards.
        """
        self._stop_requested.set()

    def teardown(self) -> None:
        """Release the connection. Safe from any state, any number of times."""
        self.request_stop()
        with self._cycle_lock:
            self._release_connection()
            if self._state is not LifecycleState.TORN_DOWN:
                self._log.info(
                    "Teardown after %d tuples", self._checkpoint.emitted_count
                )
            self._state = LifecycleState.TORN_DOWN

    def _release_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()
