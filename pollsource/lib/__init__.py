"""Polling source library modules.

This package contains the operator, its plug-in contracts, and the
utilities for running it locally.
"""

from pollsource.lib.checkpoint import CheckpointState
from pollsource.lib.config import SourceConfig
from pollsource.lib.config_loader import (
    load_operator,
    load_operator_factory,
    load_source_config,
)
from pollsource.lib.connections import Row, StoreConnection, resolve_driver
from pollsource.lib.context import OperatorContext
from pollsource.lib.converters import (
    CallableRowConverter,
    ColumnRowConverter,
    DictRowConverter,
    RowConverter,
    TupleRowConverter,
    as_row_converter,
)
from pollsource.lib.emission import PollCycleResult, run_poll_cycle
from pollsource.lib.env import expand_env_vars, expand_options, load_env_file
from pollsource.lib.errors import (
    ConfigurationError,
    ConnectionError,
    ConversionError,
    LifecycleError,
    QueryExecutionError,
    SourceError,
)
from pollsource.lib.logging import (
    JSONFormatter,
    OperatorLogger,
    get_operator_logger,
    setup_logging,
)
from pollsource.lib.operator import LifecycleState, PollingSourceOperator
from pollsource.lib.ports import (
    CallbackOutputPort,
    CollectingOutputPort,
    OutputPort,
    QueueOutputPort,
)
from pollsource.lib.queries import (
    CallableQueryProvider,
    IncrementalQueryProvider,
    Query,
    QueryProvider,
    StaticQueryProvider,
    TableQueryProvider,
    as_query_provider,
)
from pollsource.lib.runner import LocalRunner, RestartPolicy, RunResult
from pollsource.lib.state import (
    delete_checkpoint,
    list_checkpoints,
    load_checkpoint,
    save_checkpoint,
)

__all__ = [
    # Operator
    "PollingSourceOperator",
    "LifecycleState",
    "OperatorContext",
    "run_poll_cycle",
    "PollCycleResult",
    # Checkpoint
    "CheckpointState",
    "save_checkpoint",
    "load_checkpoint",
    "delete_checkpoint",
    "list_checkpoints",
    # Store
    "StoreConnection",
    "Row",
    "resolve_driver",
    # Queries
    "Query",
    "QueryProvider",
    "StaticQueryProvider",
    "TableQueryProvider",
    "IncrementalQueryProvider",
    "CallableQueryProvider",
    "as_query_provider",
    # Converters
    "RowConverter",
    "DictRowConverter",
    "TupleRowConverter",
    "ColumnRowConverter",
    "CallableRowConverter",
    "as_row_converter",
    # Ports
    "OutputPort",
    "CollectingOutputPort",
    "CallbackOutputPort",
    "QueueOutputPort",
    # Config
    "SourceConfig",
    "load_source_config",
    "load_operator",
    "load_operator_factory",
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    # Running
    "LocalRunner",
    "RestartPolicy",
    "RunResult",
    # Errors
    "SourceError",
    "ConnectionError",
    "ConfigurationError",
    "QueryExecutionError",
    "ConversionError",
    "LifecycleError",
    # Logging
    "setup_logging",
    "JSONFormatter",
    "OperatorLogger",
    "get_operator_logger",
]
