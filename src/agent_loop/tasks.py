"""Markdown checkbox task list consumed read-only by the task loop."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

SUMMARY_WIDTH = 50
NO_TASK_SUMMARY = "Working..."

_INCOMPLETE = re.compile(r"^- \[ \] ?(.*)$", re.MULTILINE)
_COMPLETE = re.compile(r"^- \[x\] ", re.MULTILINE)


class TaskListMissingError(FileNotFoundError):
    """Task list file does not exist."""


@dataclass(frozen=True, slots=True)
class TaskListView:
    """Display-only snapshot of the task list."""

    next_task: str
    remaining: int
    completed: int


class TaskList(Protocol):
    def view(self) -> TaskListView:
        """Return next task summary and counts."""


class MarkdownTaskList:
    """`- [ ]` / `- [x]` items of a markdown file such as ``PRD.md``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def ensure_exists(self) -> None:
        if not self.path.is_file():
            raise TaskListMissingError(f"{self.path} not found")

    def view(self) -> TaskListView:
        text = self._read()
        incomplete = _INCOMPLETE.findall(text)
        next_task = incomplete[0].strip()[:SUMMARY_WIDTH] if incomplete else ""
        return TaskListView(
            next_task=next_task or NO_TASK_SUMMARY,
            remaining=len(incomplete),
            completed=len(_COMPLETE.findall(text)),
        )

    def _read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text("utf-8", errors="replace")
