"""Row converters: one store row in, one pipeline tuple out."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, Union

from pollsource.lib.connections import Row
from pollsource.lib.errors import ConfigurationError

__all__ = [
    "RowConverter",
    "DictRowConverter",
    "TupleRowConverter",
    "ColumnRowConverter",
    "CallableRowConverter",
    "as_row_converter",
    "converter_from_name",
]


class RowConverter(ABC):
    """Maps one row to one tuple.

    Must accept every row the paired query can return. Raise
    ``ConversionError`` (or anything else, which the emission loop wraps)
    for rows that cannot be converted.
    """

    @abstractmethod
    def row_to_tuple(self, row: Row) -> Any:
        raise NotImplementedError()


class DictRowConverter(RowConverter):
    """Row -> ``{column: value}``, with optional column renames."""

    def __init__(self, rename: Optional[Dict[str, str]] = None) -> None:
        self.rename = dict(rename or {})

    def row_to_tuple(self, row: Row) -> Dict[str, Any]:
        record = row.as_dict()
        if not self.rename:
            return record
        return {self.rename.get(k, k): v for k, v in record.items()}


class TupleRowConverter(RowConverter):
    """Row -> plain tuple of values in column order."""

    def row_to_tuple(self, row: Row) -> Tuple[Any, ...]:
        return tuple(row.values)


class ColumnRowConverter(RowConverter):
    """Row -> the value of a single column."""

    def __init__(self, column: Union[str, int]) -> None:
        self.column = column

    def row_to_tuple(self, row: Row) -> Any:
        return row[self.column]


class CallableRowConverter(RowConverter):
    def __init__(self, fn: Callable[[Row], Any]) -> None:
        self.fn = fn

    def row_to_tuple(self, row: Row) -> Any:
        return self.fn(row)


def as_row_converter(value: Union[RowConverter, Callable[[Row], Any]]) -> RowConverter:
    """Coerce a converter or plain callable into a RowConverter."""
    if isinstance(value, RowConverter):
        return value
    if callable(value):
        return CallableRowConverter(value)
    raise ConfigurationError(
        f"Cannot build a row converter from {type(value).__name__}",
        field="row_converter",
    )


def converter_from_name(name: str) -> RowConverter:
    """Build a converter from its config name.

    Accepts ``dict``, ``tuple`` and ``column:<name>``.
    """
    kind, _, arg = name.partition(":")
    kind = kind.strip().lower()

    if kind == "dict":
        return DictRowConverter()
    if kind == "tuple":
        return TupleRowConverter()
    if kind == "column":
        if not arg:
            raise ConfigurationError(
                "column converter needs a column name, e.g. 'column:id'",
                field="converter",
                value=name,
            )
        return ColumnRowConverter(int(arg) if arg.isdigit() else arg)

    raise ConfigurationError(
        f"Unknown converter: {name}",
        field="converter",
        value=name,
        suggestion="Use one of: dict, tuple, column:<name>",
    )
