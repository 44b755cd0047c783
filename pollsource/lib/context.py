"""Operator context handed over by the engine at setup."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from pollsource.lib.config import SourceConfig

__all__ = ["OperatorContext"]


@dataclass
class OperatorContext:
    """Identity and configuration of one operator instance.

    ``config`` overrides whatever the operator was constructed with.
    ``attributes`` carries engine-specific extras the operator ignores.
    """

    operator_id: str = "source"
    config: Optional["SourceConfig"] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
