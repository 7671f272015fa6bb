"""Merge-state checks used after AI conflict resolution."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class MergeState(Protocol):
    def finalize(self) -> bool:
        """Try to conclude an in-progress merge; return whether it is complete."""


class GitMergeState:
    """Inspect and conclude a git merge in ``workdir``."""

    def __init__(self, workdir: Path, git: str = "git") -> None:
        self.workdir = workdir
        self.git = git

    def in_progress(self) -> bool:
        completed = self._git("rev-parse", "-q", "--verify", "MERGE_HEAD")
        return completed.returncode == 0

    def finalize(self) -> bool:
        if not self.in_progress():
            return True
        completed = self._git("commit", "--no-edit")
        if completed.returncode != 0:
            logger.debug(
                "git commit --no-edit failed (%s): %s",
                completed.returncode,
                (completed.stderr or completed.stdout).strip(),
            )
        return not self.in_progress()

    def _git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603
            [self.git, *args],
            cwd=self.workdir,
            capture_output=True,
            text=True,
            check=False,
        )
