"""YAML configuration loader for polling sources.

Example YAML (orders.yaml):
    source:
      name: orders
      storeUrl: "${ORDERS_DSN}"
      driverIdentifier: pyodbc
      tableName: dbo.Orders
      batchSize: 500
      user: "${DB_USER}"
      password: "${DB_PASSWORD}"
      converter: dict
      incremental:
        cursor_column: OrderId

Usage:
    # Command line
    python -m pollsource run orders.yaml --windows 10

    # Python API
    from pollsource.lib.config_loader import load_operator
    operator = load_operator("orders.yaml", output=my_port)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from pollsource.lib.checkpoint import CheckpointState
from pollsource.lib.config import SourceConfig
from pollsource.lib.connections import resolve_driver
from pollsource.lib.converters import (
    ColumnRowConverter,
    RowConverter,
    TupleRowConverter,
    converter_from_name,
)
from pollsource.lib.env import expand_options
from pollsource.lib.errors import ConfigurationError
from pollsource.lib.operator import PollingSourceOperator
from pollsource.lib.ports import OutputPort
from pollsource.lib.queries import (
    IncrementalQueryProvider,
    QueryProvider,
    StaticQueryProvider,
    TableQueryProvider,
)
from pollsource.lib.runner import OperatorFactory

logger = logging.getLogger(__name__)

__all__ = [
    "build_query_provider",
    "build_row_converter",
    "load_operator",
    "load_operator_factory",
    "load_source_config",
    "load_yaml",
]

ConfigSource = Union[str, Path, Dict[str, Any]]

# Keys describing query/converter choice rather than SourceConfig fields
_LOADER_KEYS = ("converter", "columns", "order_by", "orderBy", "incremental")


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML file and return the ``source`` section (or the whole document)."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", field="path", value=path)

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")

    section = document.get("source", document)
    if not isinstance(section, dict):
        raise ConfigurationError("'source' must be a mapping", field="source")
    return section


def _split_section(source: ConfigSource) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return (SourceConfig options, loader options) with env vars expanded."""
    section = load_yaml(source) if isinstance(source, (str, Path)) else dict(source)
    section = expand_options(section)

    loader_opts = {key: section.pop(key) for key in _LOADER_KEYS if key in section}

    incremental = loader_opts.get("incremental")
    if incremental is not None:
        if not isinstance(incremental, dict) or not incremental.get("cursor_column"):
            raise ConfigurationError(
                "incremental needs a cursor_column", field="incremental", value=incremental
            )
        section.setdefault("cursor_column", incremental["cursor_column"])

    return section, loader_opts


def load_source_config(source: ConfigSource) -> SourceConfig:
    """Build a validated SourceConfig from a YAML file path or a dict."""
    options, _ = _split_section(source)
    return SourceConfig.from_dict(options)


def _cursor_reading(
    config: SourceConfig, loader_opts: Dict[str, Any]
) -> Tuple[Union[str, int], bool]:
    """Return (tuple key, scalar_tuple) for reading the cursor back out of a tuple.

    Rejects converters whose tuples cannot carry the cursor value, which
    would otherwise fail every cycle after the first.
    """
    incremental = loader_opts.get("incremental") or {}
    tuple_key = incremental.get("tuple_key", config.cursor_column)
    converter = build_row_converter(loader_opts)

    if isinstance(converter, ColumnRowConverter):
        if converter.column not in (config.cursor_column, tuple_key):
            raise ConfigurationError(
                f"Converter 'column:{converter.column}' drops the cursor column "
                f"{config.cursor_column}",
                field="converter",
                value=converter.column,
                suggestion=f"Use converter: dict, or column:{config.cursor_column}",
            )
        return tuple_key, True

    if isinstance(converter, TupleRowConverter) and not isinstance(tuple_key, int):
        raise ConfigurationError(
            "The tuple converter needs incremental.tuple_key set to the cursor "
            "column's position",
            field="incremental.tuple_key",
            value=tuple_key,
            suggestion="Use converter: dict, or set tuple_key: 0 for the first column",
        )

    return tuple_key, False


def build_query_provider(
    config: SourceConfig,
    loader_opts: Optional[Dict[str, Any]] = None,
) -> QueryProvider:
    """Choose the query provider a config describes.

    ``cursor_column`` selects incremental polling; otherwise an explicit
    ``query`` runs as-is, and a bare ``table_name`` selects the whole table.
    """
    loader_opts = loader_opts or {}

    if config.cursor_column:
        tuple_key, scalar_tuple = _cursor_reading(config, loader_opts)
        return IncrementalQueryProvider(
            tuple_key,
            base_query=config.query,
            table_name=None if config.query else config.table_name,
            paramstyle=getattr(resolve_driver(config.driver), "paramstyle", "qmark"),
            sql_column=config.cursor_column,
            scalar_tuple=scalar_tuple,
        )

    if config.query:
        return StaticQueryProvider(config.query)

    if config.table_name:
        return TableQueryProvider(
            config.table_name,
            columns=loader_opts.get("columns"),
            order_by=loader_opts.get("order_by") or loader_opts.get("orderBy"),
        )

    raise ConfigurationError(
        "Cannot build a query: set query, table_name or cursor_column",
        field="query",
    )


def build_row_converter(loader_opts: Optional[Dict[str, Any]] = None) -> RowConverter:
    name = (loader_opts or {}).get("converter", "dict")
    return converter_from_name(str(name))


def load_operator_factory(source: ConfigSource, output: OutputPort) -> OperatorFactory:
    """Return a factory building fresh operators from one config.

    The config is parsed once; each call returns a new operator seeded
    with the given checkpoint, as ``LocalRunner`` needs on restart.
    """
    options, loader_opts = _split_section(source)
    config = SourceConfig.from_dict(options)
    # validate provider and converter choices up front
    build_query_provider(config, loader_opts)
    build_row_converter(loader_opts)

    def factory(checkpoint: Optional[CheckpointState]) -> PollingSourceOperator:
        return PollingSourceOperator(
            build_query_provider(config, loader_opts),
            build_row_converter(loader_opts),
            output,
            config,
            checkpoint=checkpoint,
        )

    logger.debug("Loaded source config %s", config.display_name)
    return factory


def load_operator(
    source: ConfigSource,
    output: OutputPort,
    *,
    checkpoint: Optional[CheckpointState] = None,
) -> PollingSourceOperator:
    """Build a ready-to-setup operator from a YAML file path or a dict."""
    return load_operator_factory(source, output)(checkpoint)
