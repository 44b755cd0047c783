"""Logging setup for source operators.

Text output by default; JSON lines for log aggregation when requested.
Operator code logs through ``OperatorLogger`` so every record carries the
operator id and current window.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

__all__ = [
    "JSONFormatter",
    "OperatorLogger",
    "get_operator_logger",
    "setup_logging",
]

# Attributes every LogRecord has; anything else came in via extra=
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formats each record as one JSON object.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "pollsource.lib.operator", "message": "Setup complete",
         "operator": "orders", "window_id": 42}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class OperatorLogger(logging.LoggerAdapter):
    """Logger adapter that stamps operator context onto every record.

    Example:
        log = get_operator_logger(__name__, operator="orders")
        log.bind(window_id=7)
        log.info("Window opened")
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        super().__init__(logger, dict(context))

    def bind(self, **context: Any) -> None:
        """Add or replace context fields."""
        self.extra.update(context)  # type: ignore[union-attr]

    def unbind(self, *keys: str) -> None:
        for key in keys:
            self.extra.pop(key, None)  # type: ignore[union-attr]

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_operator_logger(name: str, **context: Any) -> OperatorLogger:
    return OperatorLogger(logging.getLogger(name), **context)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger.

    Args:
        verbose: Enable debug-level logging
        json_format: Emit JSON lines instead of text
        log_file: Optional file to log to in addition to stderr
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stdout carries emitted tuples in the CLI, so logs go to stderr
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
