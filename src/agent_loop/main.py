"""CLI entrypoint for agent-loop."""

import logging
from pathlib import Path

import rich_click as click

from agent_loop import __version__
from agent_loop.controllers import (
    LoopCliController,
    LoopRunCommand,
    PreflightError,
    ResolveConflictsCommand,
    TaskStatusCommand,
)
from agent_loop.models import EngineKind

click.rich_click.USE_MARKDOWN = True
LOOP_CONTROLLER = LoopCliController()
ENGINE_CHOICES = [kind.value for kind in EngineKind]


@click.group()
@click.version_option(version=__version__, prog_name="agent-loop")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show debug output.")
def agent_loop(verbose: bool) -> None:
    """Run an AI coding agent through a PRD task list until it is complete."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(message)s",
    )


@agent_loop.command("run")
@click.option(
    "--workdir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory with the task list. Defaults to AGENT_LOOP_WORKDIR or `.`.",
)
@click.option(
    "--engine",
    type=click.Choice(ENGINE_CHOICES, case_sensitive=False),
    default=None,
    help="Agent backend. If omitted, AGENT_LOOP_ENGINE is used (default claude).",
)
@click.option("--claude", "use_claude", is_flag=True, default=False, help="Use Claude Code.")
@click.option("--opencode", "use_opencode", is_flag=True, default=False, help="Use OpenCode.")
@click.option("--model", default=None, help="Model override passed to the agent CLI.")
@click.option(
    "--no-tests",
    "--skip-tests",
    "no_tests",
    is_flag=True,
    default=False,
    help="Skip writing and running tests.",
)
@click.option(
    "--no-lint",
    "--skip-lint",
    "no_lint",
    is_flag=True,
    default=False,
    help="Skip linting.",
)
@click.option("--fast", is_flag=True, default=False, help="Skip both tests and linting.")
@click.option(
    "--max-iterations",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after N iterations (0 = unlimited).",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=1),
    default=None,
    help="Attempts per task on empty output or API errors (default 3).",
)
@click.option(
    "--retry-delay",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds between attempts (default 5).",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show the instructions that would be sent without executing.",
)
@click.option("--task-file", type=click.Path(path_type=Path), default=None, help="Task list.")
@click.option(
    "--progress-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Progress log the agent appends to.",
)
def run_loop(  # noqa: PLR0913
    workdir: Path | None,
    engine: str | None,
    use_claude: bool,
    use_opencode: bool,
    model: str | None,
    no_tests: bool,
    no_lint: bool,
    fast: bool,
    max_iterations: int | None,
    max_retries: int | None,
    retry_delay: float | None,
    dry_run: bool,
    task_file: Path | None,
    progress_file: Path | None,
) -> None:
    """Run tasks one at a time until the agent reports the PRD is complete."""

    if use_claude and use_opencode:
        raise click.UsageError("--claude and --opencode are mutually exclusive.")
    if use_opencode:
        engine = EngineKind.OPENCODE.value
    elif use_claude:
        engine = EngineKind.CLAUDE.value

    try:
        result = LOOP_CONTROLLER.run(
            LoopRunCommand(
                workdir=workdir,
                engine=engine,
                model=model,
                skip_tests=(no_tests or fast) or None,
                skip_lint=(no_lint or fast) or None,
                dry_run=dry_run or None,
                max_iterations=max_iterations,
                max_retries=max_retries,
                retry_delay=retry_delay,
                task_file=task_file,
                progress_file=progress_file,
            ),
        )
    except (PreflightError, ValueError) as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(result.lines)
    if result.exit_code:
        raise SystemExit(result.exit_code)


@agent_loop.command("tasks")
@click.option("--workdir", type=click.Path(path_type=Path, file_okay=False), default=None)
@click.option("--task-file", type=click.Path(path_type=Path), default=None)
def show_tasks(workdir: Path | None, task_file: Path | None) -> None:
    """Show the next incomplete task and completion counts."""

    try:
        lines = LOOP_CONTROLLER.tasks(TaskStatusCommand(workdir=workdir, task_file=task_file))
    except PreflightError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@agent_loop.command("resolve-conflicts")
@click.argument("files", nargs=-1, required=True)
@click.option("--branch", required=True, help="Branch whose merge produced the conflicts.")
@click.option("--workdir", type=click.Path(path_type=Path, file_okay=False), default=None)
@click.option(
    "--engine",
    type=click.Choice(ENGINE_CHOICES, case_sensitive=False),
    default=None,
    help="Agent backend. If omitted, AGENT_LOOP_ENGINE is used (default claude).",
)
@click.option("--model", default=None, help="Model override passed to the agent CLI.")
def resolve_conflicts(
    files: tuple[str, ...],
    branch: str,
    workdir: Path | None,
    engine: str | None,
    model: str | None,
) -> None:
    """Ask the agent to resolve merge conflicts in FILES and conclude the merge."""

    try:
        result = LOOP_CONTROLLER.resolve_conflicts(
            ResolveConflictsCommand(
                files=files,
                branch=branch,
                workdir=workdir,
                engine=engine,
                model=model,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("AI conflict resolution failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_loop()
