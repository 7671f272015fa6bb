from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import allure
import pytest

from agent_fakes import ScriptedEngine, result_event
from agent_loop.engine import EngineConfig, EngineSpawnError, InvocationHandle, get_engine
from agent_loop.models import AttemptState, EngineKind, FailureKind, RunContext
from agent_loop.retry import RetryController

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Retry Policy"),
]

ERROR_EVENT = json.dumps({"type": "error", "error": {"message": "Overloaded"}})


def _controller(engine, sleeps: list[float], **kwargs) -> RetryController:
    kwargs.setdefault("retry_delay", 5)
    return RetryController(engine=engine, poll_interval=0.01, sleep=sleeps.append, **kwargs)


def test_first_usable_result_returns_immediately(
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    sleeps: list[float] = []
    engine = ScriptedEngine([result_event()])
    controller = _controller(engine, sleeps)

    outcome = controller.run("go", engine_config, RunContext())

    assert outcome.state == AttemptState.SUCCESS
    assert outcome.attempts == 1
    assert outcome.result is not None
    assert (outcome.result.input_tokens, outcome.result.output_tokens) == (100, 50)
    assert controller.state == AttemptState.SUCCESS
    assert sleeps == []
    assert not any(path.exists() for path in sink_paths)


def test_empty_output_exhausts_after_max_retries_with_delays_between(
    engine_config: EngineConfig,
    sink_paths: list[Path],
    caplog,
) -> None:
    sleeps: list[float] = []
    engine = ScriptedEngine(["   \n"])
    controller = _controller(engine, sleeps, max_retries=3)

    with caplog.at_level(logging.WARNING, logger="agent_loop.retry"):
        outcome = controller.run("go", engine_config, RunContext())

    assert outcome.state == AttemptState.EXHAUSTED
    assert outcome.attempts == 3
    assert outcome.failure == FailureKind.EMPTY_OUTPUT
    assert outcome.error == "Empty response"
    assert engine.invocations == 3
    assert sleeps == [5, 5]
    assert len(sink_paths) == 3
    assert not any(path.exists() for path in sink_paths)
    assert "retrying in 5s" in caplog.text
    assert "(attempt 3/3)" in caplog.text


def test_backend_error_is_retried_until_success(
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    sleeps: list[float] = []
    engine = ScriptedEngine([ERROR_EVENT, result_event(text="second try")])
    controller = _controller(engine, sleeps, retry_delay=0.5)

    outcome = controller.run("go", engine_config, RunContext())

    assert outcome.state == AttemptState.SUCCESS
    assert outcome.attempts == 2
    assert outcome.result is not None
    assert outcome.result.response == "second try"
    assert sleeps == [0.5]


def test_backend_error_exhausts_with_api_error_message(
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    sleeps: list[float] = []
    controller = _controller(ScriptedEngine([ERROR_EVENT]), sleeps, max_retries=2)

    outcome = controller.run("go", engine_config, RunContext())

    assert outcome.state == AttemptState.EXHAUSTED
    assert outcome.failure == FailureKind.BACKEND_ERROR
    assert outcome.error == "API error: Overloaded"
    assert sleeps == [5]


def test_spawn_failure_propagates_without_retry(
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    sleeps: list[float] = []
    engine = get_engine(EngineKind.CLAUDE, str(Path(sys.executable).parent / "no-such-agent-cli"))
    controller = _controller(engine, sleeps)

    with pytest.raises(EngineSpawnError):
        controller.run("go", engine_config, RunContext())

    assert sleeps == []
    assert len(sink_paths) == 1
    assert not sink_paths[0].exists()


class SleepingEngine(ScriptedEngine):
    """Agent that stays busy until it is killed."""

    def __init__(self) -> None:
        super().__init__([""])

    def build_args(self, instructions: str, config: EngineConfig) -> list[str]:
        self.invocations += 1
        return ["-c", "import time; time.sleep(60)"]


def test_interrupt_during_wait_kills_agent_and_removes_output(
    monkeypatch,
    engine_config: EngineConfig,
    sink_paths: list[Path],
) -> None:
    def _interrupted_wait(self: InvocationHandle) -> int:
        raise KeyboardInterrupt

    monkeypatch.setattr(InvocationHandle, "wait", _interrupted_wait)
    sleeps: list[float] = []
    engine = SleepingEngine()
    context = RunContext()
    controller = _controller(engine, sleeps)

    with pytest.raises(KeyboardInterrupt):
        controller.run("go", engine_config, context)

    handle = engine.handles[0]
    assert handle.process.poll() is not None
    assert handle.monitor is not None
    assert not handle.monitor.running
    assert not sink_paths[0].exists()
    assert sleeps == []


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"max_retries": 0}, "max_retries"),
        ({"retry_delay": -1}, "retry_delay"),
    ],
)
def test_invalid_policy_is_rejected(kwargs: dict[str, float], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        RetryController(engine=ScriptedEngine([""]), **kwargs)


@pytest.mark.parametrize("max_retries", [1, 2, 4])
def test_attempt_budget_is_spent_exactly(
    engine_config: EngineConfig,
    sink_paths: list[Path],
    max_retries: int,
) -> None:
    sleeps: list[float] = []
    engine = ScriptedEngine([""])
    controller = _controller(engine, sleeps, max_retries=max_retries, retry_delay=0)

    outcome = controller.run("go", engine_config, RunContext())

    assert outcome.state == AttemptState.EXHAUSTED
    assert outcome.attempts == engine.invocations == max_retries
    assert sleeps == [0] * (max_retries - 1)
