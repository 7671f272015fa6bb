"""Engine adapters for external coding agents."""

from agent_loop.engine.base import (
    EngineAdapter,
    EngineConfig,
    EngineKind,
    EngineSpawnError,
    InvocationHandle,
)
from agent_loop.engine.cli_engine import (
    ClaudeEngine,
    EngineRunResult,
    OpenCodeEngine,
    get_engine,
    run_engine,
)

__all__ = [
    "ClaudeEngine",
    "EngineAdapter",
    "EngineConfig",
    "EngineKind",
    "EngineRunResult",
    "EngineSpawnError",
    "InvocationHandle",
    "OpenCodeEngine",
    "get_engine",
    "run_engine",
]
