"""Local window driver for running a source operator outside an engine.

``LocalRunner`` plays the engine's part: it drives the operator
lifecycle window by window, snapshots the checkpoint at every window end,
and restarts a failed operator from the last snapshot. Restarting is the
driver's policy; the operator itself never retries.

Restart backoff is handled by tenacity.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple, Type, Union

import tenacity
from tenacity.wait import wait_base

from pollsource.lib.checkpoint import CheckpointState
from pollsource.lib.context import OperatorContext
from pollsource.lib.errors import SourceError
from pollsource.lib.operator import PollingSourceOperator
from pollsource.lib.state import load_checkpoint, save_checkpoint

logger = logging.getLogger(__name__)

__all__ = ["LocalRunner", "OperatorFactory", "RestartPolicy", "RunResult"]

OperatorFactory = Callable[[Optional[CheckpointState]], PollingSourceOperator]


@dataclass
class RestartPolicy:
    """How the runner restarts an operator that failed fatally.

    ``max_restarts=0`` means a failure ends the run.
    """

    max_restarts: int = 0
    backoff_seconds: float = 1.0
    exponential: bool = True
    restart_on: Tuple[Type[BaseException], ...] = (SourceError,)

    @classmethod
    def none(cls) -> "RestartPolicy":
        return cls(max_restarts=0)

    @classmethod
    def default(cls) -> "RestartPolicy":
        """Three restarts with exponential backoff."""
        return cls(max_restarts=3)

    def wait_strategy(self) -> wait_base:
        if self.exponential:
            return tenacity.wait_exponential(
                multiplier=self.backoff_seconds, min=self.backoff_seconds
            )
        return tenacity.wait_fixed(self.backoff_seconds)


@dataclass
class RunResult:
    windows_completed: int = 0
    tuples_emitted: int = 0
    restarts: int = 0
    checkpoint: Optional[CheckpointState] = None


class LocalRunner:
    """Drives ``setup -> {begin_window -> emit_tuples* -> end_window}* -> teardown``.

    Args:
        operator_factory: Builds a fresh operator seeded with a checkpoint
            (None on a clean start). Called again on every restart.
        context: Context passed to ``setup``
        windows: Number of windows to run, or None to run until ``stop()``
        polls_per_window: Poll cycles inside each window
        poll_interval: Seconds to wait between poll cycles
        restart: Restart policy for fatal operator errors
        state_name: Snapshot name; when set, checkpoints are persisted to
            and restored from the state directory
        state_dir: Override for the state directory
        sleep: Wait function for poll intervals and restart backoff;
            defaults to a wait that ``stop()`` interrupts

    Example:
        runner = LocalRunner(
            lambda cp: build_operator(checkpoint=cp),
            OperatorContext("orders"),
            windows=10,
            restart=RestartPolicy(max_restarts=2),
            state_name="orders",
        )
        result = runner.run()
    """

    def __init__(
        self,
        operator_factory: OperatorFactory,
        context: Optional[OperatorContext] = None,
        *,
        windows: Optional[int] = 1,
        polls_per_window: int = 1,
        poll_interval: float = 0.0,
        restart: Optional[RestartPolicy] = None,
        state_name: Optional[str] = None,
        state_dir: Optional[Union[str, Path]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if windows is not None and windows < 0:
            raise ValueError("windows must be >= 0 or None")
        if polls_per_window < 1:
            raise ValueError("polls_per_window must be >= 1")

        self.operator_factory = operator_factory
        self.context = context or OperatorContext()
        self.windows = windows
        self.polls_per_window = polls_per_window
        self.poll_interval = poll_interval
        self.restart = restart or RestartPolicy.none()
        self.state_name = state_name
        self.state_dir = state_dir

        self._stop = threading.Event()
        self._sleep = sleep or self.wait
        self._operator: Optional[PollingSourceOperator] = None
        self._committed: Optional[CheckpointState] = None
        self._next_window_id = 0
        self._polled = False

    def stop(self) -> None:
        """Stop after the current row; safe to call from a signal handler or thread."""
        self._stop.set()
        operator = self._operator
        if operator is not None:
            operator.request_stop()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, returning early (and True) once stopped."""
        return self._stop.wait(seconds)

    def run(self) -> RunResult:
        result = RunResult()

        if self.state_name:
            restored = load_checkpoint(self.state_name, state_dir=self.state_dir)
            if restored is not None:
                self._committed = restored

        def before_restart(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            result.restarts += 1
            logger.warning(
                "Operator failed (attempt %d/%d): %s. Restarting in %.1fs from last checkpoint",
                retry_state.attempt_number,
                self.restart.max_restarts + 1,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retryer = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(self.restart.max_restarts + 1),
            wait=self.restart.wait_strategy(),
            retry=tenacity.retry_if_exception(self._should_restart),
            before_sleep=before_restart,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            retryer(self._run_attempt, result)
        except Exception as exc:
            logger.error(
                "Run failed after %d restarts and %d windows (%s)",
                result.restarts,
                result.windows_completed,
                type(exc).__name__,
            )
            raise
        result.checkpoint = self._committed
        return result

    def _should_restart(self, exc: BaseException) -> bool:
        return isinstance(exc, self.restart.restart_on) and not self._stop.is_set()

    def _done(self, result: RunResult) -> bool:
        if self._stop.is_set():
            return True
        return self.windows is not None and result.windows_completed >= self.windows

    def _run_attempt(self, result: RunResult) -> None:
        if self._stop.is_set():
            return
        seed = self._committed.copy() if self._committed is not None else None
        operator = self.operator_factory(seed)
        self._operator = operator
        emitted_before = operator.checkpoint.emitted_count

        try:
            operator.setup(self.context)
            while not self._done(result):
                self._run_window(operator)
                result.windows_completed += 1
                result.checkpoint = self._committed
        finally:
            operator.teardown()
            self._operator = None
            result.tuples_emitted += operator.checkpoint.emitted_count - emitted_before

    def _run_window(self, operator: PollingSourceOperator) -> None:
        window_id = self._next_window_id
        operator.begin_window(window_id)
        for _ in range(self.polls_per_window):
            if self._stop.is_set():
                break
            if self._polled and self.poll_interval:
                self._sleep(self.poll_interval)
                if self._stop.is_set():
                    break
            self._polled = True
            operator.emit_tuples()
        operator.end_window()

        self._next_window_id += 1
        self._committed = operator.checkpoint.copy()
        if self.state_name:
            save_checkpoint(
                self.state_name,
                self._committed,
                window_id=window_id,
                state_dir=self.state_dir,
            )
