"""Domain models for agent invocation and the task loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from agent_loop.phases import Phase


class EngineKind(str, Enum):
    """Supported agent backends."""

    CLAUDE = "claude"
    OPENCODE = "opencode"


class FailureKind(str, Enum):
    """Normalized attempt failure kinds used by retry policy."""

    EMPTY_OUTPUT = "empty_output"
    BACKEND_ERROR = "backend_error"
    SPAWN_FAILURE = "spawn_failure"


class AttemptState(str, Enum):
    """Retry controller states."""

    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class IterationOutcome(str, Enum):
    """Per-iteration outcome reported by the task loop."""

    SUCCESS = "success"
    FAILED = "failed"
    ALL_DONE = "all_done"


class StopReason(str, Enum):
    """Why the task loop returned."""

    ALL_DONE = "all_done"
    MAX_ITERATIONS = "max_iterations"
    INTERRUPTED = "interrupted"
    DRY_RUN = "dry_run"


@dataclass(frozen=True, slots=True)
class ParsedResult:
    """Final result extracted from one agent output stream."""

    response: str
    input_tokens: int = 0
    output_tokens: int = 0
    is_complete: bool = False
    error: str | None = None


@dataclass(slots=True)
class AttemptOutcome:
    """Result of one retry-controlled invocation."""

    state: AttemptState
    attempts: int
    result: ParsedResult | None = None
    failure: FailureKind | None = None
    error: str | None = None


@dataclass(slots=True)
class IterationRecord:
    """One task loop iteration."""

    index: int
    attempts: int = 0
    outcome: IterationOutcome | None = None
    failure: FailureKind | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None


@dataclass(slots=True)
class RunContext:
    """Mutable loop state shared with the progress monitor.

    ``phase`` is written only by the active progress monitor; token totals and
    the iteration counter are written only by the task loop.
    """

    phase: Phase = Phase.THINKING
    task_summary: str = ""
    iteration: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


@dataclass(slots=True)
class LoopSummary:
    """Aggregate task loop counters for CLI reporting."""

    iterations: int = 0
    succeeded: int = 0
    failed: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: StopReason | None = None
    records: list[IterationRecord] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens
