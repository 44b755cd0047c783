"""In-memory checkpoint state for a polling source.

The checkpoint records the last tuple actually handed to the output port
and when it was handed over. Persisting it is the engine's job; see
``pollsource.lib.state`` for the file-backed snapshots used by the local
runner.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = ["CheckpointState", "utc_now"]


def utc_now() -> datetime:
    """Default clock for checkpoint timestamps."""
    return datetime.now(timezone.utc)


@dataclass
class CheckpointState:
    """Last emitted tuple and its timestamp.

    Both fields are written together by ``record()`` only, so the
    timestamp is set exactly when the tuple is. The timestamp never moves
    backwards; equal timestamps for consecutive tuples are fine.

    Example:
        >>> state = CheckpointState()
        >>> state.is_empty
        True
        >>> state.record({"id": 1}, utc_now())
        >>> state.last_emitted_tuple
        {'id': 1}
    """

    last_emitted_tuple: Any = None
    last_emitted_timestamp: Optional[datetime] = None
    emitted_count: int = 0

    @property
    def is_empty(self) -> bool:
        """True until the first tuple is recorded."""
        return self.last_emitted_timestamp is None

    def record(self, tuple_: Any, timestamp: datetime) -> None:
        """Record a delivered tuple.

        Called by the emission loop after ``emit`` returns, never before.
        """
        previous = self.last_emitted_timestamp
        if previous is not None and timestamp < previous:
            timestamp = previous

        self.last_emitted_tuple = tuple_
        self.last_emitted_timestamp = timestamp
        self.emitted_count += 1

    def copy(self) -> "CheckpointState":
        return CheckpointState(
            last_emitted_tuple=self.last_emitted_tuple,
            last_emitted_timestamp=self.last_emitted_timestamp,
            emitted_count=self.emitted_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a serializable dictionary."""
        ts = self.last_emitted_timestamp
        return {
            "last_tuple": self.last_emitted_tuple,
            "last_timestamp": ts.isoformat() if ts else None,
            "emitted_count": self.emitted_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointState":
        """Rebuild a checkpoint from ``to_dict()`` output.

        A snapshot without a timestamp is treated as empty.
        """
        raw_ts = data.get("last_timestamp")
        tuple_ = data.get("last_tuple")
        if raw_ts is None:
            return cls(emitted_count=int(data.get("emitted_count", 0)))

        timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            last_emitted_tuple=tuple_,
            last_emitted_timestamp=timestamp,
            emitted_count=int(data.get("emitted_count", 0)),
        )
