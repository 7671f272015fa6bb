"""Runtime configuration for the agent task loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from agent_loop.models import EngineKind


@dataclass(slots=True)
class EngineSettings:
    """Agent backend selection."""

    kind: EngineKind = EngineKind.CLAUDE
    model: str | None = None
    commands: dict[EngineKind, str] = field(
        default_factory=lambda: {
            EngineKind.CLAUDE: "claude",
            EngineKind.OPENCODE: "opencode",
        },
    )

    @property
    def command(self) -> str:
        return self.commands[self.kind]


@dataclass(slots=True)
class LoopSettings:
    """Task loop and retry policy."""

    max_iterations: int = 0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    skip_tests: bool = False
    skip_lint: bool = False
    dry_run: bool = False
    poll_interval_seconds: float = 0.12
    iteration_pause_seconds: float = 1.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    workdir: Path = Path(".")
    task_file: Path = Path("PRD.md")
    progress_file: Path = Path("progress.txt")
    engine: EngineSettings = field(default_factory=EngineSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)

    @classmethod
    def from_env(cls, workdir: Path | None = None) -> Settings:
        """Load settings from ``AGENT_LOOP_*`` variables with local defaults."""

        return cls(
            workdir=workdir or Path(os.getenv("AGENT_LOOP_WORKDIR", ".")),
            task_file=Path(os.getenv("AGENT_LOOP_TASK_FILE", "PRD.md")),
            progress_file=Path(os.getenv("AGENT_LOOP_PROGRESS_FILE", "progress.txt")),
            engine=EngineSettings(
                kind=_env_engine("AGENT_LOOP_ENGINE", default=EngineKind.CLAUDE),
                model=os.getenv("AGENT_LOOP_MODEL") or None,
                commands={
                    EngineKind.CLAUDE: os.getenv("AGENT_LOOP_CLAUDE_COMMAND", "claude"),
                    EngineKind.OPENCODE: os.getenv("AGENT_LOOP_OPENCODE_COMMAND", "opencode"),
                },
            ),
            loop=LoopSettings(
                max_iterations=_env_int("AGENT_LOOP_MAX_ITERATIONS", "0"),
                max_retries=_env_int("AGENT_LOOP_MAX_RETRIES", "3"),
                retry_delay_seconds=_env_float("AGENT_LOOP_RETRY_DELAY", "5"),
                skip_tests=_env_bool("AGENT_LOOP_SKIP_TESTS", default=False),
                skip_lint=_env_bool("AGENT_LOOP_SKIP_LINT", default=False),
                dry_run=_env_bool("AGENT_LOOP_DRY_RUN", default=False),
                poll_interval_seconds=_env_float("AGENT_LOOP_POLL_INTERVAL", "0.12"),
                iteration_pause_seconds=_env_float("AGENT_LOOP_ITERATION_PAUSE", "1"),
            ),
        )

    @property
    def task_path(self) -> Path:
        return self.workdir / self.task_file

    @property
    def progress_path(self) -> Path:
        return self.workdir / self.progress_file

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.loop.max_iterations < 0:
            raise ValueError("AGENT_LOOP_MAX_ITERATIONS must be >= 0.")
        if self.loop.max_retries < 1:
            raise ValueError("AGENT_LOOP_MAX_RETRIES must be >= 1.")
        if self.loop.retry_delay_seconds < 0:
            raise ValueError("AGENT_LOOP_RETRY_DELAY must be >= 0.")
        if self.loop.poll_interval_seconds <= 0:
            raise ValueError("AGENT_LOOP_POLL_INTERVAL must be > 0.")
        if self.loop.iteration_pause_seconds < 0:
            raise ValueError("AGENT_LOOP_ITERATION_PAUSE must be >= 0.")
        if not self.engine.command.strip():
            raise ValueError(f"Command for engine {self.engine.kind.value!r} is empty.")


def _env_engine(name: str, default: EngineKind) -> EngineKind:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return EngineKind(value.strip().lower())
    except ValueError as error:
        supported = ", ".join(kind.value for kind in EngineKind)
        raise ValueError(f"Invalid {name}: {value!r}. Expected one of: {supported}.") from error


def _env_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
