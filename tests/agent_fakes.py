"""Scripted agents and event builders shared by tests."""

from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path

from agent_loop.engine.base import EngineConfig, InvocationHandle
from agent_loop.engine.cli_engine import CliEngine
from agent_loop.models import EngineKind

ECHO_AGENT_COMMAND = f"{shlex.quote(sys.executable)} -m agent_loop.engine.echo_agent"

_WRITE_ARGV = "import sys; sys.stdout.write(sys.argv[1]); sys.stdout.flush()"


class ScriptedEngine(CliEngine):
    """Real subprocess engine that prints one scripted output per invocation."""

    kind = EngineKind.CLAUDE
    default_command = sys.executable

    def __init__(self, outputs: list[str]) -> None:
        super().__init__(shlex.quote(sys.executable))
        self.outputs = list(outputs)
        self.invocations = 0
        self.handles: list[InvocationHandle] = []

    def build_args(self, instructions: str, config: EngineConfig) -> list[str]:
        index = min(self.invocations, len(self.outputs) - 1)
        self.invocations += 1
        return ["-c", _WRITE_ARGV, self.outputs[index]]

    def invoke(self, instructions: str, sink_path: Path, config: EngineConfig) -> InvocationHandle:
        handle = super().invoke(instructions, sink_path, config)
        self.handles.append(handle)
        return handle


def result_event(
    *,
    text: str = "done",
    input_tokens: object = 100,
    output_tokens: object = 50,
) -> str:
    return json.dumps(
        {
            "type": "result",
            "result": text,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        },
    )
