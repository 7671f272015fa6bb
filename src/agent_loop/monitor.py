"""Background progress monitor for a running agent invocation."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TextIO

import click

from agent_loop.models import RunContext
from agent_loop.phases import Phase, classify_phase, read_tail

logger = logging.getLogger(__name__)

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
TASK_WIDTH = 40
DEFAULT_POLL_INTERVAL = 0.12

_PHASE_COLORS: dict[Phase, str] = {
    Phase.THINKING: "cyan",
    Phase.READING_CODE: "cyan",
    Phase.IMPLEMENTING: "magenta",
    Phase.WRITING_TESTS: "magenta",
    Phase.TESTING: "yellow",
    Phase.LINTING: "yellow",
    Phase.STAGING: "green",
    Phase.COMMITTING: "green",
}


def format_elapsed(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


class StatusLine:
    """Single rewritable terminal line: spinner, phase, task and elapsed time."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream
        self._frame = 0

    def render(self, *, phase: Phase, task: str, elapsed_seconds: float) -> str:
        spinner = SPINNER_FRAMES[self._frame % len(SPINNER_FRAMES)]
        self._frame += 1
        label = click.style(f"{phase.value:<16}", fg=_PHASE_COLORS.get(phase, "blue"))
        line = f"  {spinner} {label} │ {task[:TASK_WIDTH]} [{format_elapsed(elapsed_seconds)}]"
        click.echo(f"\r\x1b[K{line}", nl=False, file=self.stream)
        return line

    def clear(self) -> None:
        click.echo("\r\x1b[K", nl=False, file=self.stream)


class ProgressMonitor:
    """Poll the output sink on a short interval and publish the current phase.

    The monitor is the only writer of ``context.phase``. After `stop` returns
    the thread has been joined and no further writes happen.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        sink_path: Path,
        context: RunContext,
        status_line: StatusLine | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        task_file: str = "PRD.md",
        progress_file: str = "progress.txt",
    ) -> None:
        self.sink_path = sink_path
        self.context = context
        self.status_line = status_line
        self.interval = interval
        self.task_file = task_file
        self.progress_file = progress_file
        self.ticks = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at = time.monotonic()

    def start(self) -> ProgressMonitor:
        if self._thread is not None:
            raise RuntimeError("Progress monitor already started.")
        self._started_at = time.monotonic()
        self.context.phase = Phase.THINKING
        self._thread = threading.Thread(target=self._run, name="agent-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
        if self.status_line is not None:
            self.status_line.clear()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> None:
        """Classify the sink tail once and redraw the status line."""

        try:
            buffer = read_tail(self.sink_path)
        except OSError as error:
            logger.debug("Skipping progress tick: %s", error)
            return
        phase = classify_phase(
            buffer,
            self.context.phase,
            task_file=self.task_file,
            progress_file=self.progress_file,
        )
        if self._stop_event.is_set():
            return
        self.context.phase = phase
        self.ticks += 1
        if self.status_line is not None:
            self.status_line.render(
                phase=phase,
                task=self.context.task_summary,
                elapsed_seconds=time.monotonic() - self._started_at,
            )

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.interval)
