from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

import allure
import pytest

from agent_fakes import ScriptedEngine, result_event
from agent_loop.engine import EngineConfig, get_engine
from agent_loop.loop import LoopInterrupted, LoopOptions, TaskLoop
from agent_loop.models import (
    AttemptOutcome,
    AttemptState,
    EngineKind,
    FailureKind,
    IterationOutcome,
    ParsedResult,
    RunContext,
    StopReason,
)
from agent_loop.results import COMPLETION_MARKER
from agent_loop.retry import RetryController
from agent_loop.tasks import MarkdownTaskList

pytestmark = [
    allure.epic("Task Loop"),
    allure.feature("Iteration Control"),
]


@pytest.fixture()
def task_list(tmp_path: Path) -> MarkdownTaskList:
    path = tmp_path / "PRD.md"
    path.write_text("- [x] Scaffold\n- [ ] Add login form\n- [ ] Add logout\n", "utf-8")
    return MarkdownTaskList(path)


def _loop(
    task_list: MarkdownTaskList,
    controller,
    engine_config: EngineConfig,
    lines: list[str],
    pauses: list[float] | None = None,
    **options,
) -> TaskLoop:
    return TaskLoop(
        task_list=task_list,
        retry_controller=controller,
        options=LoopOptions(engine=engine_config, **options),
        emit=lines.append,
        sleep=(pauses if pauses is not None else []).append,
    )


def _retry(engine, **kwargs) -> RetryController:
    return RetryController(
        engine=engine,
        retry_delay=0,
        poll_interval=0.01,
        sleep=lambda _: None,
        **kwargs,
    )


def test_successful_iterations_accumulate_tokens_until_complete(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    engine = ScriptedEngine(
        [
            result_event(text="Added login form"),
            result_event(text=f"All done {COMPLETION_MARKER}"),
        ],
    )
    lines: list[str] = []
    pauses: list[float] = []
    loop = _loop(task_list, _retry(engine), engine_config, lines, pauses)

    summary = loop.run()

    assert summary.stop_reason == StopReason.ALL_DONE
    assert summary.iterations == 2
    assert [record.outcome for record in summary.records] == [
        IterationOutcome.SUCCESS,
        IterationOutcome.ALL_DONE,
    ]
    assert (summary.input_tokens, summary.output_tokens) == (200, 100)
    assert summary.total_tokens == 300
    assert loop.context.total_tokens == 300
    assert pauses == [1.0]
    assert "Added login form" in lines
    assert any(">>> Task 2" in line for line in lines)
    assert "    Completed: 1 | Remaining: 2" in lines
    assert loop.context.task_summary == "Add login form"


def test_exhausted_task_is_counted_and_loop_continues(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    engine = ScriptedEngine(["", "", result_event(text=COMPLETION_MARKER)])
    lines: list[str] = []
    loop = _loop(task_list, _retry(engine, max_retries=2), engine_config, lines)

    summary = loop.run()

    assert summary.stop_reason == StopReason.ALL_DONE
    assert summary.failed == 1
    assert summary.succeeded == 1
    assert summary.records[0].attempts == 2
    assert summary.records[0].error == "Empty response"
    assert summary.records[0].failure == FailureKind.EMPTY_OUTPUT
    assert (summary.input_tokens, summary.output_tokens) == (100, 50)
    assert any("Task failed after 2 attempts, continuing..." in line for line in lines)


def test_max_iterations_stops_loop(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    engine = ScriptedEngine([result_event()])
    lines: list[str] = []
    loop = _loop(task_list, _retry(engine), engine_config, lines, max_iterations=3)

    summary = loop.run()

    assert summary.stop_reason == StopReason.MAX_ITERATIONS
    assert summary.iterations == 3
    assert engine.invocations == 3
    assert any("Reached max iterations (3)" in line for line in lines)


def test_dry_run_prints_instructions_without_invoking(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
) -> None:
    engine = ScriptedEngine([result_event()])
    lines: list[str] = []
    loop = _loop(task_list, _retry(engine), engine_config, lines, dry_run=True, skip_lint=True)

    summary = loop.run()

    assert summary.stop_reason == StopReason.DRY_RUN
    assert summary.iterations == 1
    assert engine.invocations == 0
    assert "[INFO] DRY RUN - Would execute:" in lines
    instructions = lines[lines.index("[INFO] DRY RUN - Would execute:") + 1]
    assert instructions.startswith("@PRD.md @progress.txt")
    assert "linting" not in instructions


def test_spawn_failure_marks_iteration_failed(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    engine = get_engine(EngineKind.CLAUDE, str(Path(sys.executable).parent / "no-such-agent-cli"))
    lines: list[str] = []
    loop = _loop(task_list, _retry(engine), engine_config, lines, max_iterations=2)

    summary = loop.run()

    assert summary.stop_reason == StopReason.MAX_ITERATIONS
    assert summary.failed == 2
    assert all(record.attempts == 0 for record in summary.records)
    assert all(record.failure == FailureKind.SPAWN_FAILURE for record in summary.records)
    assert all("not found" in (record.error or "") for record in summary.records)
    assert any("Task failed (claude command not found" in line for line in lines)
    assert not any(path.exists() for path in sink_paths)


class InterruptingController:
    """Succeeds once, then behaves like a user pressing Ctrl+C."""

    def __init__(self, interrupt) -> None:
        self.calls = 0
        self.interrupt = interrupt

    def run(self, instructions: str, config: EngineConfig, context: RunContext) -> AttemptOutcome:
        self.calls += 1
        if self.calls > 1:
            self.interrupt()
        return AttemptOutcome(
            state=AttemptState.SUCCESS,
            attempts=1,
            result=ParsedResult(response="ok", input_tokens=100, output_tokens=50),
        )


def test_interrupt_keeps_accumulated_totals(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
) -> None:
    def _raise() -> None:
        raise LoopInterrupted("SIGINT")

    lines: list[str] = []
    loop = _loop(task_list, InterruptingController(_raise), engine_config, lines)

    summary = loop.run()

    assert summary.stop_reason == StopReason.INTERRUPTED
    assert summary.iterations == 1
    assert (summary.input_tokens, summary.output_tokens) == (100, 50)
    assert any("Interrupted! Cleaned up." in line for line in lines)


@pytest.mark.skipif(os.name == "nt", reason="POSIX signals")
def test_sigterm_is_handled_and_handlers_restored(
    task_list: MarkdownTaskList,
    engine_config: EngineConfig,
) -> None:
    original = signal.getsignal(signal.SIGTERM)

    def _terminate() -> None:
        os.kill(os.getpid(), signal.SIGTERM)

    loop = _loop(task_list, InterruptingController(_terminate), engine_config, [])

    summary = loop.run()

    assert summary.stop_reason == StopReason.INTERRUPTED
    assert summary.input_tokens >= 100
    assert signal.getsignal(signal.SIGTERM) == original
