"""Task loop that drives the agent through the task list one task at a time."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import click

from agent_loop.engine.base import EngineConfig, EngineSpawnError
from agent_loop.models import (
    AttemptState,
    FailureKind,
    IterationOutcome,
    IterationRecord,
    LoopSummary,
    RunContext,
    StopReason,
)
from agent_loop.prompts import build_instructions
from agent_loop.retry import RetryController
from agent_loop.tasks import TaskList

logger = logging.getLogger(__name__)


class LoopInterrupted(KeyboardInterrupt):
    """Raised in the main thread when a termination signal arrives."""

    def __init__(self, signal_name: str) -> None:
        super().__init__(signal_name)
        self.signal_name = signal_name


@dataclass(slots=True)
class LoopOptions:
    """Per-run task loop options."""

    engine: EngineConfig
    max_iterations: int = 0
    skip_tests: bool = False
    skip_lint: bool = False
    dry_run: bool = False
    iteration_pause_seconds: float = 1.0
    task_file: str = "PRD.md"
    progress_file: str = "progress.txt"


class TaskLoop:
    """Runs iterations until the agent reports completion or the cap is reached.

    A failed task never stops the loop; only the completion marker, the
    iteration cap, a dry run or an interrupt do.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_list: TaskList,
        retry_controller: RetryController,
        options: LoopOptions,
        context: RunContext | None = None,
        emit: Callable[[str], None] = click.echo,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.task_list = task_list
        self.retry_controller = retry_controller
        self.options = options
        self.context = context or RunContext()
        self.emit = emit
        self.sleep = sleep
        self._interrupted = False

    def run(self) -> LoopSummary:
        summary = LoopSummary()
        with self._signal_handlers():
            try:
                self._run_until_stopped(summary)
            except KeyboardInterrupt as error:
                signal_name = getattr(error, "signal_name", "SIGINT")
                logger.info("Task loop interrupted by %s", signal_name)
                self.emit("")
                self.emit(click.style("[WARN] Interrupted! Cleaned up.", fg="yellow"))
                summary.stop_reason = StopReason.INTERRUPTED
        summary.input_tokens = self.context.total_input_tokens
        summary.output_tokens = self.context.total_output_tokens
        return summary

    def run_iteration(self) -> IterationRecord:
        """Run one task through the retry controller and update totals."""

        self.context.iteration += 1
        record = IterationRecord(index=self.context.iteration)
        view = self.task_list.view()
        self.emit("")
        self.emit(click.style(f">>> Task {record.index}", bold=True))
        self.emit(f"    Completed: {view.completed} | Remaining: {view.remaining}")
        self.emit("-" * 44)
        self.context.task_summary = view.next_task

        instructions = build_instructions(
            skip_tests=self.options.skip_tests,
            skip_lint=self.options.skip_lint,
            task_file=self.options.task_file,
            progress_file=self.options.progress_file,
        )
        if self.options.dry_run:
            self.emit("[INFO] DRY RUN - Would execute:")
            self.emit(instructions)
            record.outcome = IterationOutcome.SUCCESS
            return record

        try:
            outcome = self.retry_controller.run(instructions, self.options.engine, self.context)
        except EngineSpawnError as error:
            logger.error("Agent failed to start: %s", error)
            record.outcome = IterationOutcome.FAILED
            record.failure = FailureKind.SPAWN_FAILURE
            record.error = str(error)
            return record

        record.attempts = outcome.attempts
        if outcome.state != AttemptState.SUCCESS or outcome.result is None:
            record.outcome = IterationOutcome.FAILED
            record.failure = outcome.failure
            record.error = outcome.error
            return record

        result = outcome.result
        self.emit(f"  {click.style('✓', fg='green')} {'Done':<16} │ {view.next_task}")
        if result.response:
            self.emit("")
            self.emit(result.response)

        record.input_tokens = result.input_tokens
        record.output_tokens = result.output_tokens
        self.context.total_input_tokens += result.input_tokens
        self.context.total_output_tokens += result.output_tokens
        record.outcome = IterationOutcome.ALL_DONE if result.is_complete else IterationOutcome.SUCCESS
        return record

    def _run_until_stopped(self, summary: LoopSummary) -> None:
        while True:
            record = self.run_iteration()
            summary.records.append(record)
            summary.iterations = self.context.iteration
            if record.outcome == IterationOutcome.FAILED:
                summary.failed += 1
                reason = (
                    f"after {record.attempts} attempts" if record.attempts else f"({record.error})"
                )
                self.emit(click.style(f"[WARN] Task failed {reason}, continuing...", fg="yellow"))
            else:
                summary.succeeded += 1

            if record.outcome == IterationOutcome.ALL_DONE:
                summary.stop_reason = StopReason.ALL_DONE
                return
            if self.options.dry_run:
                summary.stop_reason = StopReason.DRY_RUN
                return
            max_iterations = self.options.max_iterations
            if max_iterations > 0 and self.context.iteration >= max_iterations:
                self.emit(
                    click.style(f"[WARN] Reached max iterations ({max_iterations})", fg="yellow"),
                )
                summary.stop_reason = StopReason.MAX_ITERATIONS
                return
            if self.options.iteration_pause_seconds > 0:
                self.sleep(self.options.iteration_pause_seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        names = [name for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)]
        signums = [getattr(signal, name) for name in names]
        originals: dict[int, object] = {}

        def _handler(signum: int, _: object | None) -> None:
            if self._interrupted:
                return
            self._interrupted = True
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            raise LoopInterrupted(name)

        try:
            for signum in signums:
                originals[signum] = signal.getsignal(signum)
                signal.signal(signum, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            originals.clear()
        try:
            yield
        finally:
            for signum, original in originals.items():
                signal.signal(signum, original)
