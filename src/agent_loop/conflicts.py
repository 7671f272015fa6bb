"""AI-assisted merge conflict resolution.

One engine run, no retry loop: abandoning a failed resolution is always
safe, so any failure is reported as ``False`` and left to the caller.
"""

from __future__ import annotations

import logging

from agent_loop.engine.base import EngineAdapter, EngineConfig
from agent_loop.engine.cli_engine import run_engine
from agent_loop.merge import MergeState

logger = logging.getLogger(__name__)


def build_conflict_instructions(conflicted_files: list[str], branch: str) -> str:
    file_list = "\n".join(f"  - {path}" for path in conflicted_files)
    return (
        "You are resolving a git merge conflict. The following files have conflicts "
        f'after merging branch "{branch}":\n'
        f"\n"
        f"{file_list}\n"
        f"\n"
        f"For each conflicted file:\n"
        f"1. Read the file to see the conflict markers (<<<<<<<, =======, >>>>>>>)\n"
        f"2. Understand what both versions are trying to do\n"
        f"3. Edit the file to resolve the conflict by combining both changes appropriately\n"
        f"4. Remove ALL conflict markers - the file should be valid code with no markers "
        f"remaining\n"
        f"5. Make sure the resulting code is syntactically valid and logically correct\n"
        f"\n"
        f"After resolving all conflicts in all files:\n"
        f"1. Run 'git add' on each resolved file to stage it\n"
        f"2. Run 'git commit --no-edit' to complete the merge\n"
        f"\n"
        f"Important: Do not create new commits for individual file resolutions. Only run "
        f"'git commit --no-edit' once at the very end after ALL files are resolved and staged."
    )


def resolve_conflicts(
    *,
    engine: EngineAdapter,
    conflicted_files: list[str],
    branch: str,
    config: EngineConfig,
    merge_state: MergeState,
) -> bool:
    """Ask the agent to resolve conflicts, then make sure the merge is concluded."""

    if not conflicted_files:
        return True

    logger.info(
        "Attempting AI-assisted conflict resolution for %d file(s)...",
        len(conflicted_files),
    )
    logger.debug("Conflicted files: %s", ", ".join(conflicted_files))
    instructions = build_conflict_instructions(conflicted_files, branch)

    try:
        run = run_engine(engine, instructions, config)
        if not run.success:
            logger.error("AI conflict resolution failed: %s", run.error or "Unknown error")
            return False
        if merge_state.finalize():
            logger.info("AI successfully resolved merge conflicts")
            return True
        logger.debug("Files may be resolved but the merge is not concluded, finalizing...")
        return merge_state.finalize()
    except Exception as error:  # noqa: BLE001
        logger.error("AI conflict resolution error: %s", error)
        return False
