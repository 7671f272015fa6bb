"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_loop.engine.base import EngineConfig
from agent_loop.models import EngineKind


@pytest.fixture()
def sink_paths(tmp_path: Path, monkeypatch) -> list[Path]:
    """Route agent output files into tmp_path and record them."""

    created: list[Path] = []

    def _new_sink_path() -> Path:
        path = tmp_path / f"sink-{len(created)}.log"
        path.touch()
        created.append(path)
        return path

    monkeypatch.setattr("agent_loop.retry.new_sink_path", _new_sink_path)
    monkeypatch.setattr("agent_loop.engine.cli_engine.new_sink_path", _new_sink_path)
    return created


@pytest.fixture()
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(kind=EngineKind.CLAUDE, workdir=tmp_path)
