"""Local demo agent for engine integration tests.

Accepts the argument shapes of both supported backends and prints a
deterministic event stream. ``AGENT_LOOP_ECHO_MODE`` selects the behaviour:
``success`` (default), ``complete``, ``empty`` or ``error``.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time

from agent_loop.results import COMPLETION_MARKER


def main(argv: list[str] | None = None) -> int:
    """Emit a scripted agent run."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", dest="prompt", default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("--output-format", default=None)
    parser.add_argument("--format", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--dangerously-skip-permissions", action="store_true")
    parser.add_argument("words", nargs="*")
    args = parser.parse_intermixed_args(argv)

    opencode = bool(args.words) and args.words[0] == "run"
    prompt = args.prompt if args.prompt is not None else " ".join(args.words[1:])
    mode = os.getenv("AGENT_LOOP_ECHO_MODE", "success")
    delay = float(os.getenv("AGENT_LOOP_ECHO_DELAY", "0"))

    if mode == "empty":
        return 0

    _emit(
        {
            "type": "system",
            "subtype": "init",
            "model": args.model or "echo",
            "permission": os.getenv("OPENCODE_PERMISSION"),
            "cwd": os.getcwd(),
        },
    )
    if mode == "error":
        _emit({"type": "error", "error": {"message": "Overloaded"}})
        return 1

    _emit({"type": "tool_use", "tool": "read" if opencode else "Read", "input": "PRD.md"})
    _pause(delay)
    _emit({"type": "tool_use", "tool": "write" if opencode else "Write", "input": "app.py"})
    _pause(delay)
    _emit({"type": "tool_use", "command": "git commit -m 'echo task'"})

    text = f"Done: {prompt.splitlines()[0] if prompt else 'nothing'}"
    if mode == "complete":
        text = f"{text}\n{COMPLETION_MARKER}"
    usage = (
        {"inputTokens": 100, "outputTokens": 50}
        if opencode
        else {"input_tokens": 100, "output_tokens": 50}
    )
    _emit({"type": "result", "result": text, "usage": usage})
    return 0


def _emit(event: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(event, separators=(",", ":")) + "\n")
    sys.stdout.flush()


def _pause(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
