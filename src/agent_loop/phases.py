"""Deterministic activity classification for live agent output."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path

TAIL_BYTES = 5_000


class Phase(str, Enum):
    """Coarse agent activity shown on the status line."""

    THINKING = "Thinking"
    READING_CODE = "Reading code"
    IMPLEMENTING = "Implementing"
    WRITING_TESTS = "Writing tests"
    TESTING = "Testing"
    LINTING = "Linting"
    LOGGING = "Logging"
    UPDATING_TASKS = "Updating tasks"
    STAGING = "Staging"
    COMMITTING = "Committing"


_COMMIT_PATTERN = re.compile(r'git commit|"command":"git commit')
_STAGE_PATTERN = re.compile(r'git add|"command":"git add')
_LINT_PATTERN = re.compile(r"lint|eslint|biome|prettier|ruff")
_TEST_RUNNER_PATTERN = re.compile(r"vitest|jest|bun test|npm test|pytest|go test")
_TEST_FILE_PATTERN = re.compile(r"\.test\.|\.spec\.|__tests__|_test\.go|test_\w+\.py")
_WRITE_TOOL_PATTERN = re.compile(
    r'"tool":"[Ww]rite"|"tool":"[Ee]dit"|"name":"[Ww]rite"|"name":"[Ee]dit"',
)
_READ_TOOL_PATTERN = re.compile(
    r'"tool":"[Rr]ead"|"tool":"[Gg]lob"|"tool":"[Gg]rep"'
    r'|"name":"[Rr]ead"|"name":"[Gg]lob"|"name":"[Gg]rep"',
)


def classify_phase(
    buffer: str,
    current: Phase = Phase.THINKING,
    *,
    task_file: str = "PRD.md",
    progress_file: str = "progress.txt",
) -> Phase:
    """Return the phase suggested by the latest output, or ``current`` if none matches.

    Rules are tested in a fixed order and the first match wins, so the
    result depends only on ``buffer`` and ``current``.
    """

    if not buffer:
        return current
    rules: tuple[tuple[re.Pattern[str], Phase], ...] = (
        (_COMMIT_PATTERN, Phase.COMMITTING),
        (_STAGE_PATTERN, Phase.STAGING),
        (re.compile(re.escape(progress_file)), Phase.LOGGING),
        (re.compile(re.escape(task_file)), Phase.UPDATING_TASKS),
        (_LINT_PATTERN, Phase.LINTING),
        (_TEST_RUNNER_PATTERN, Phase.TESTING),
        (_TEST_FILE_PATTERN, Phase.WRITING_TESTS),
        (_WRITE_TOOL_PATTERN, Phase.IMPLEMENTING),
        (_READ_TOOL_PATTERN, Phase.READING_CODE),
    )
    for pattern, phase in rules:
        if pattern.search(buffer):
            return phase
    return current


def read_tail(path: Path, limit: int = TAIL_BYTES) -> str:
    """Read the last ``limit`` bytes of a file as text."""

    with path.open("rb") as handle:
        handle.seek(0, 2)
        size = handle.tell()
        handle.seek(max(0, size - limit))
        data = handle.read()
    return data.decode("utf-8", errors="replace")
