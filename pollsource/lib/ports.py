"""Output ports: where emitted tuples go.

The engine supplies the real port. ``emit`` may block until downstream
has capacity; the emission loop waits for it before touching the
checkpoint.
"""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

__all__ = [
    "OutputPort",
    "CollectingOutputPort",
    "CallbackOutputPort",
    "QueueOutputPort",
]


class OutputPort(ABC):
    """Single output channel of a source operator."""

    @abstractmethod
    def emit(self, tuple_: Any) -> None:
        """Hand a tuple downstream. Ownership passes to the port."""
        raise NotImplementedError()


class CollectingOutputPort(OutputPort):
    """Keeps every emitted tuple in a list. Handy for tests and dry runs."""

    def __init__(self) -> None:
        self.tuples: List[Any] = []

    def emit(self, tuple_: Any) -> None:
        self.tuples.append(tuple_)

    def clear(self) -> None:
        self.tuples.clear()

    def __len__(self) -> int:
        return len(self.tuples)


class CallbackOutputPort(OutputPort):
    """Calls ``fn(tuple)`` for every emission."""

    def __init__(self, fn: Callable[[Any], None]) -> None:
        self.fn = fn

    def emit(self, tuple_: Any) -> None:
        self.fn(tuple_)


class QueueOutputPort(OutputPort):
    """Bounded queue; ``emit`` blocks while the queue is full.

    Args:
        maxsize: Queue capacity (0 means unbounded)
        timeout: Seconds to wait for capacity, or None to wait forever.
            ``queue.Full`` propagates when the wait times out.
    """

    def __init__(self, maxsize: int = 0, timeout: Optional[float] = None) -> None:
        self.queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self.timeout = timeout

    def emit(self, tuple_: Any) -> None:
        self.queue.put(tuple_, block=True, timeout=self.timeout)

    def get(self, timeout: Optional[float] = None) -> Any:
        return self.queue.get(timeout=timeout)

    def drain(self) -> List[Any]:
        items: List[Any] = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items
