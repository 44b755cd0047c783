"""Polling SQL source operator for windowed stream pipelines.

The operator pulls rows from a SQL store through any DB-API driver,
converts each row to a tuple, emits it downstream, and keeps a checkpoint
of the last delivered tuple so an engine can resume after a failure.

Usage:
    python -m pollsource run orders.yaml --windows 10
"""

from pollsource.lib.checkpoint import CheckpointState
from pollsource.lib.config import SourceConfig
from pollsource.lib.context import OperatorContext
from pollsource.lib.operator import LifecycleState, PollingSourceOperator

__version__ = "1.0.0"

__all__ = [
    "CheckpointState",
    "LifecycleState",
    "OperatorContext",
    "PollingSourceOperator",
    "SourceConfig",
]
