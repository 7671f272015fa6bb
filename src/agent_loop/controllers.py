"""Controllers for agent-loop CLI commands."""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import click

from agent_loop.config import Settings
from agent_loop.conflicts import resolve_conflicts
from agent_loop.engine import EngineConfig, get_engine
from agent_loop.loop import LoopOptions, TaskLoop
from agent_loop.merge import GitMergeState
from agent_loop.models import EngineKind, LoopSummary, StopReason
from agent_loop.monitor import StatusLine
from agent_loop.retry import RetryController
from agent_loop.tasks import MarkdownTaskList

RULE = "=" * 44


class PreflightError(RuntimeError):
    """Precondition for running the loop is not met."""


@dataclass(slots=True)
class LoopRunCommand:
    """CLI input for the task loop."""

    workdir: Path | None = None
    engine: str | None = None
    model: str | None = None
    skip_tests: bool | None = None
    skip_lint: bool | None = None
    dry_run: bool | None = None
    max_iterations: int | None = None
    max_retries: int | None = None
    retry_delay: float | None = None
    task_file: Path | None = None
    progress_file: Path | None = None


@dataclass(slots=True)
class LoopRunResult:
    """Loop summary and report lines to render in CLI."""

    summary: LoopSummary
    lines: list[str]

    @property
    def exit_code(self) -> int:
        return 130 if self.summary.stop_reason == StopReason.INTERRUPTED else 0


@dataclass(slots=True)
class TaskStatusCommand:
    """CLI input for task list inspection."""

    workdir: Path | None = None
    task_file: Path | None = None


@dataclass(slots=True)
class ResolveConflictsCommand:
    """CLI input for AI-assisted conflict resolution."""

    files: tuple[str, ...]
    branch: str
    workdir: Path | None = None
    engine: str | None = None
    model: str | None = None


@dataclass(slots=True)
class ResolveConflictsResult:
    lines: list[str]
    success: bool


class LoopCliController:
    """Builds settings and collaborators for each CLI command."""

    def run(
        self,
        command: LoopRunCommand,
        emit: Callable[[str], None] = click.echo,
    ) -> LoopRunResult:
        settings = _settings(command.workdir, engine=command.engine, model=command.model)
        _apply_loop_overrides(settings, command)
        settings.validate()

        task_list = MarkdownTaskList(settings.task_path)
        try:
            task_list.ensure_exists()
        except FileNotFoundError as error:
            raise PreflightError(f"{settings.task_file} not found in {settings.workdir}") from error
        if not settings.progress_path.exists():
            emit(f"[WARN] {settings.progress_file} not found, creating it...")
            settings.progress_path.touch()
        if not settings.loop.dry_run:
            _require_executable(settings)

        for line in _banner_lines(settings):
            emit(line)

        engine = get_engine(settings.engine.kind, settings.engine.command)
        controller = RetryController(
            engine=engine,
            max_retries=settings.loop.max_retries,
            retry_delay=settings.loop.retry_delay_seconds,
            status_line=StatusLine(),
            poll_interval=settings.loop.poll_interval_seconds,
            task_file=str(settings.task_file),
            progress_file=str(settings.progress_file),
        )
        loop = TaskLoop(
            task_list=task_list,
            retry_controller=controller,
            options=LoopOptions(
                engine=_engine_config(settings),
                max_iterations=settings.loop.max_iterations,
                skip_tests=settings.loop.skip_tests,
                skip_lint=settings.loop.skip_lint,
                dry_run=settings.loop.dry_run,
                iteration_pause_seconds=settings.loop.iteration_pause_seconds,
                task_file=str(settings.task_file),
                progress_file=str(settings.progress_file),
            ),
            emit=emit,
        )
        summary = loop.run()
        return LoopRunResult(summary=summary, lines=render_summary_lines(summary))

    def tasks(self, command: TaskStatusCommand) -> list[str]:
        settings = Settings.from_env(workdir=command.workdir)
        if command.task_file is not None:
            settings.task_file = command.task_file
        task_list = MarkdownTaskList(settings.task_path)
        try:
            task_list.ensure_exists()
        except FileNotFoundError as error:
            raise PreflightError(f"{settings.task_file} not found in {settings.workdir}") from error
        view = task_list.view()
        return [
            f"Next task: {view.next_task}",
            f"Completed: {view.completed} | Remaining: {view.remaining}",
        ]

    def resolve_conflicts(self, command: ResolveConflictsCommand) -> ResolveConflictsResult:
        settings = _settings(command.workdir, engine=command.engine, model=command.model)
        settings.validate()
        resolved = resolve_conflicts(
            engine=get_engine(settings.engine.kind, settings.engine.command),
            conflicted_files=list(command.files),
            branch=command.branch,
            config=_engine_config(settings),
            merge_state=GitMergeState(settings.workdir),
        )
        if resolved:
            line = f"Resolved {len(command.files)} conflicted file(s) from {command.branch}."
        else:
            line = f"Conflict resolution for {command.branch} failed."
        return ResolveConflictsResult(lines=[line], success=resolved)


def render_summary_lines(summary: LoopSummary) -> list[str]:
    """Final report with aggregate token usage."""

    if summary.stop_reason == StopReason.ALL_DONE:
        headline = f"PRD complete! Finished {summary.iterations} task(s)."
    elif summary.stop_reason == StopReason.MAX_ITERATIONS:
        headline = f"Stopped after {summary.iterations} iteration(s)."
    elif summary.stop_reason == StopReason.DRY_RUN:
        headline = "Dry run finished."
    else:
        headline = f"Interrupted after {summary.iterations} iteration(s)."
    return [
        "",
        RULE,
        headline,
        RULE,
        "",
        ">>> Usage Summary",
        f"Input tokens:  {summary.input_tokens}",
        f"Output tokens: {summary.output_tokens}",
        f"Total tokens:  {summary.total_tokens}",
        f"Failed tasks:  {summary.failed}",
        RULE,
    ]


def _settings(workdir: Path | None, *, engine: str | None, model: str | None) -> Settings:
    settings = Settings.from_env(workdir=workdir)
    if engine is not None:
        settings.engine.kind = EngineKind(engine.lower())
    if model is not None:
        settings.engine.model = model or None
    return settings


def _apply_loop_overrides(settings: Settings, command: LoopRunCommand) -> None:
    loop = settings.loop
    if command.skip_tests is not None:
        loop.skip_tests = command.skip_tests
    if command.skip_lint is not None:
        loop.skip_lint = command.skip_lint
    if command.dry_run is not None:
        loop.dry_run = command.dry_run
    if command.max_iterations is not None:
        loop.max_iterations = command.max_iterations
    if command.max_retries is not None:
        loop.max_retries = command.max_retries
    if command.retry_delay is not None:
        loop.retry_delay_seconds = command.retry_delay
    if command.task_file is not None:
        settings.task_file = command.task_file
    if command.progress_file is not None:
        settings.progress_file = command.progress_file


def _engine_config(settings: Settings) -> EngineConfig:
    return EngineConfig(
        kind=settings.engine.kind,
        workdir=settings.workdir,
        model=settings.engine.model,
    )


def _require_executable(settings: Settings) -> None:
    executable = shlex.split(settings.engine.command)[0]
    if shutil.which(executable) is None:
        raise PreflightError(
            f"{settings.engine.kind.value} CLI not found: {executable}",
        )


def _banner_lines(settings: Settings) -> list[str]:
    lines = [
        RULE,
        "agent-loop - Running until PRD is complete",
        f"Engine: {settings.engine.kind.value}",
    ]
    mode_parts: list[str] = []
    if settings.loop.skip_tests:
        mode_parts.append("no-tests")
    if settings.loop.skip_lint:
        mode_parts.append("no-lint")
    if settings.loop.dry_run:
        mode_parts.append("dry-run")
    if settings.loop.max_iterations > 0:
        mode_parts.append(f"max:{settings.loop.max_iterations}")
    if mode_parts:
        lines.append(f"Mode: {' '.join(mode_parts)}")
    lines.append(RULE)
    return lines
