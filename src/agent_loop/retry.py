"""Bounded retry around one supervised agent invocation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from agent_loop.engine.base import EngineAdapter, EngineConfig
from agent_loop.engine.cli_engine import new_sink_path
from agent_loop.models import (
    AttemptOutcome,
    AttemptState,
    FailureKind,
    RunContext,
)
from agent_loop.monitor import DEFAULT_POLL_INTERVAL, ProgressMonitor, StatusLine

logger = logging.getLogger(__name__)


class RetryController:
    """Run an invocation until it yields a usable result or the budget is spent.

    Empty output and backend error events are retried after ``retry_delay``
    seconds. Spawn failures propagate to the caller without a retry. Every
    attempt releases its process, monitor and output file before the next one
    starts, including when an interrupt unwinds through it.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        engine: EngineAdapter,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        status_line: StatusLine | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        task_file: str = "PRD.md",
        progress_file: str = "progress.txt",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        if retry_delay < 0:
            raise ValueError("retry_delay must be >= 0.")
        self.engine = engine
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.status_line = status_line
        self.poll_interval = poll_interval
        self.task_file = task_file
        self.progress_file = progress_file
        self.sleep = sleep
        self.state = AttemptState.ATTEMPTING

    def run(self, instructions: str, config: EngineConfig, context: RunContext) -> AttemptOutcome:
        attempts = 0
        failure: FailureKind | None = None
        error: str | None = None

        while attempts < self.max_retries:
            self._transition(AttemptState.ATTEMPTING)
            attempts += 1
            raw_output = self.attempt(instructions, config, context)

            if not raw_output.strip():
                failure, error = FailureKind.EMPTY_OUTPUT, "Empty response"
            else:
                result = self.engine.extract(raw_output)
                if result.error is None:
                    self._transition(AttemptState.SUCCESS)
                    return AttemptOutcome(
                        state=AttemptState.SUCCESS,
                        attempts=attempts,
                        result=result,
                    )
                failure, error = FailureKind.BACKEND_ERROR, f"API error: {result.error}"

            if attempts >= self.max_retries:
                logger.warning("%s (attempt %d/%d)", error, attempts, self.max_retries)
                break
            logger.warning(
                "%s (attempt %d/%d), retrying in %ss",
                error,
                attempts,
                self.max_retries,
                _format_seconds(self.retry_delay),
            )
            self._transition(AttemptState.RETRYING)
            self.sleep(self.retry_delay)

        self._transition(AttemptState.EXHAUSTED)
        return AttemptOutcome(
            state=AttemptState.EXHAUSTED,
            attempts=attempts,
            failure=failure,
            error=error,
        )

    def attempt(self, instructions: str, config: EngineConfig, context: RunContext) -> str:
        """Run one invocation with a live monitor and return its full output."""

        sink_path = new_sink_path()
        try:
            handle = self.engine.invoke(instructions, sink_path, config)
        except BaseException:
            sink_path.unlink(missing_ok=True)
            raise
        try:
            handle.monitor = ProgressMonitor(
                sink_path=sink_path,
                context=context,
                status_line=self.status_line,
                interval=self.poll_interval,
                task_file=self.task_file,
                progress_file=self.progress_file,
            ).start()
            exit_code = handle.wait()
            handle.stop_monitor()
            logger.debug(
                "Agent pid=%s exited with code %s after %.1fs",
                handle.pid,
                exit_code,
                time.monotonic() - handle.started_at,
            )
            return handle.read_output()
        finally:
            handle.release()

    def _transition(self, state: AttemptState) -> None:
        logger.debug("Retry controller: %s -> %s", self.state.value, state.value)
        self.state = state


def _format_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
