"""Subprocess-based adapters for CLI coding agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from agent_loop.engine.base import (
    EngineAdapter,
    EngineConfig,
    EngineSpawnError,
    InvocationHandle,
)
from agent_loop.models import EngineKind, ParsedResult
from agent_loop.results import extract_result

logger = logging.getLogger(__name__)


class CliEngine(ABC):
    """Launch a CLI agent with stdout and stderr merged into one sink file."""

    kind: EngineKind
    default_command: str

    def __init__(self, command: str | None = None) -> None:
        self.command = (command or self.default_command).strip()

    @abstractmethod
    def build_args(self, instructions: str, config: EngineConfig) -> list[str]:
        """Arguments after the command head, ending with the instructions."""

    def build_env(self) -> dict[str, str]:
        return os.environ.copy()

    def invoke(self, instructions: str, sink_path: Path, config: EngineConfig) -> InvocationHandle:
        command_head = shlex.split(self.command)
        if not command_head:
            raise EngineSpawnError(f"{self.kind.value} command is empty.", transient=False)
        run_args = command_head + self.build_args(instructions, config)
        logger.debug("Starting %s agent: %s", self.kind.value, command_head[0])

        try:
            with sink_path.open("ab") as sink:
                process = subprocess.Popen(  # noqa: S603
                    run_args,
                    cwd=config.workdir,
                    env=self.build_env(),
                    stdin=subprocess.DEVNULL,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    start_new_session=os.name != "nt",
                )
        except FileNotFoundError as error:
            raise EngineSpawnError(
                f"{self.kind.value} command not found: {command_head[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise EngineSpawnError(
                f"{self.kind.value} agent failed to start: {error}",
                transient=True,
            ) from error
        return InvocationHandle(process=process, sink_path=sink_path)

    def extract(self, raw_output: str) -> ParsedResult:
        return extract_result(raw_output, self.kind)


class ClaudeEngine(CliEngine):
    """Claude Code in print mode with a stream-json event stream."""

    kind = EngineKind.CLAUDE
    default_command = "claude"

    def build_args(self, instructions: str, config: EngineConfig) -> list[str]:
        args = ["--dangerously-skip-permissions", "--verbose", "--output-format", "stream-json"]
        if config.model:
            args += ["--model", config.model]
        return args + ["-p", instructions]


class OpenCodeEngine(CliEngine):
    """OpenCode ``run`` with newline-delimited JSON events."""

    kind = EngineKind.OPENCODE
    default_command = "opencode"

    def build_args(self, instructions: str, config: EngineConfig) -> list[str]:
        args = ["run", "--format", "json"]
        if config.model:
            args += ["--model", config.model]
        return args + [instructions]

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["OPENCODE_PERMISSION"] = '{"*":"allow"}'
        return env


ENGINE_TYPES: dict[EngineKind, type[CliEngine]] = {
    EngineKind.CLAUDE: ClaudeEngine,
    EngineKind.OPENCODE: OpenCodeEngine,
}


def get_engine(kind: EngineKind, command: str | None = None) -> CliEngine:
    """Return the adapter for ``kind``, optionally with a different executable."""

    return ENGINE_TYPES[kind](command)


@dataclass(slots=True)
class EngineRunResult:
    """Outcome of one blocking engine run."""

    success: bool
    result: ParsedResult | None
    error: str | None
    elapsed_seconds: float


def run_engine(engine: EngineAdapter, instructions: str, config: EngineConfig) -> EngineRunResult:
    """Invoke once, wait for exit and parse the output; no monitor, no retry."""

    sink_path = new_sink_path()
    started = time.monotonic()
    try:
        handle = engine.invoke(instructions, sink_path, config)
    except BaseException:
        sink_path.unlink(missing_ok=True)
        raise
    try:
        handle.wait()
        raw_output = handle.read_output()
    finally:
        handle.release()
    elapsed = time.monotonic() - started

    if not raw_output.strip():
        return EngineRunResult(
            success=False,
            result=None,
            error="Empty response",
            elapsed_seconds=elapsed,
        )
    result = engine.extract(raw_output)
    return EngineRunResult(
        success=result.error is None,
        result=result,
        error=result.error,
        elapsed_seconds=elapsed,
    )


def new_sink_path() -> Path:
    """Create an empty temp file to collect agent output."""

    handle, name = tempfile.mkstemp(prefix="agent-loop-", suffix=".log")
    os.close(handle)
    return Path(name)
