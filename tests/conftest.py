"""Shared test fixtures for ralphloop tests."""

from __future__ import annotations

from pathlib import Path

import git
import pytest

from ralphloop.config import Config


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a workspace with a base prompt and a manifest."""
    (tmp_path / "RALPH_PROMPT.md").write_text(
        "# Build Anvil\n\nImplement phase 1. Print ANVIL_PHASE_1_COMPLETE when done.\n"
    )
    (tmp_path / "Dockerfile").write_text("FROM ubuntu:24.04\n")
    return tmp_path


@pytest.fixture
def git_workspace(workspace: Path) -> Path:
    """Workspace initialized as a git repository with one commit."""
    repo = git.Repo.init(workspace)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    repo.git.add(all=True)
    repo.index.commit("Initial commit")
    return workspace


@pytest.fixture
def config(workspace: Path) -> Config:
    """Configuration pointing at the temporary workspace."""
    cfg = Config(workspace=workspace)
    cfg.loop.iteration_delay = 0
    cfg.meta.cycle_delay = 0
    return cfg


@pytest.fixture
def no_sleep():
    """A sleep replacement that records requested delays."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


ENV_VARS = [
    "RALPH_MAX_ITERATIONS",
    "RALPH_TARGET_PHASE",
    "RALPH_PROMPT_FILE",
    "RALPH_AGENT_COMMAND",
    "RALPH_ITERATION_DELAY",
    "RALPH_AGENT_TIMEOUT",
    "RALPH_META_DELAY",
    "RALPH_REBUILD_COMMAND",
    "RALPH_LOG_LEVEL",
    "OLLAMA_HOST",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Clear ralphloop environment variables and skip .env loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("ralphloop.config.load_dotenv", lambda: None)
    return monkeypatch
