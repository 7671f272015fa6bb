"""Engine interface for supervised agent invocations."""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from agent_loop.models import EngineKind, ParsedResult

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 2


class EngineSpawnError(RuntimeError):
    """Agent process could not be started."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Per-invocation engine settings."""

    kind: EngineKind
    workdir: Path = Path(".")
    model: str | None = None


class StoppableMonitor(Protocol):
    def stop(self) -> None:
        """Stop and join the monitor."""


@dataclass(slots=True)
class InvocationHandle:
    """One running agent process and the file collecting its output."""

    process: subprocess.Popen[bytes]
    sink_path: Path
    started_at: float = field(default_factory=time.monotonic)
    monitor: StoppableMonitor | None = None
    _released: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait(self) -> int:
        return self.process.wait()

    def stop_monitor(self) -> None:
        if self.monitor is not None:
            self.monitor.stop()

    def read_output(self) -> str:
        if not self.sink_path.exists():
            return ""
        return self.sink_path.read_text("utf-8", errors="replace")

    def release(self) -> None:
        """Stop the monitor, kill the process group and delete the sink.

        Safe to call from both the normal path and an interrupt path; only the
        first call does any work.
        """

        if self._released:
            return
        self._released = True
        self.stop_monitor()
        terminate_process_group(self.process)
        self.sink_path.unlink(missing_ok=True)


class EngineAdapter(Protocol):
    """Uniform invoke/extract contract implemented by each agent backend."""

    kind: EngineKind
    command: str

    def invoke(self, instructions: str, sink_path: Path, config: EngineConfig) -> InvocationHandle:
        """Start the agent without waiting; output goes to ``sink_path``."""

    def extract(self, raw_output: str) -> ParsedResult:
        """Parse finished output of this backend."""


def terminate_process_group(process: subprocess.Popen[bytes]) -> None:
    """Terminate the agent and any children it started."""

    if os.name == "nt":
        if process.poll() is None:
            process.kill()
            process.wait()
        return

    _signal_group(process.pid, signal.SIGTERM)
    with contextlib.suppress(subprocess.TimeoutExpired):
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    # Children may outlive the leader and ignore SIGTERM.
    _signal_group(process.pid, signal.SIGKILL)
    process.wait(timeout=TERMINATE_GRACE_SECONDS)


def _signal_group(pgid: int, signum: int) -> None:
    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return
    except PermissionError:
        logger.debug("Not permitted to signal process group %s", pgid)
