"""Instruction text sent to the agent for each iteration."""

from __future__ import annotations

from agent_loop.results import COMPLETION_MARKER


def build_instructions(
    *,
    skip_tests: bool = False,
    skip_lint: bool = False,
    task_file: str = "PRD.md",
    progress_file: str = "progress.txt",
) -> str:
    """Build the numbered step list for one task.

    Steps are numbered contiguously, so omitting tests or linting shifts the
    numbers of every later step.
    """

    steps = ["Find the highest-priority incomplete task and implement it."]
    if not skip_tests:
        steps.append("Write tests for the feature.")
        steps.append("Run tests and ensure they pass before proceeding.")
    if not skip_lint:
        steps.append("Run linting and ensure it passes before proceeding.")
    steps.append("Update the PRD to mark the task as complete.")
    steps.append(f"Append your progress to {progress_file}.")
    steps.append("Commit your changes with a descriptive message.")

    rules = "ONLY WORK ON A SINGLE TASK."
    if not skip_tests:
        rules += " Do not proceed if tests fail."
    if not skip_lint:
        rules += " Do not proceed if linting fails."

    lines = [f"@{task_file} @{progress_file}"]
    lines.extend(f"{number}. {step}" for number, step in enumerate(steps, start=1))
    lines.append(rules)
    lines.append(f"If ALL tasks in the PRD are complete, output {COMPLETION_MARKER}.")
    return "\n".join(lines)
