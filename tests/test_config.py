"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from ralphloop.config import (
    DEFAULT_MODEL_CANDIDATES,
    Config,
    LoopConfig,
    MetaConfig,
    parse_phase,
)


class TestParsePhase:
    """Tests for parse_phase."""

    @pytest.mark.parametrize("value,expected", [("1", 1), ("2", 2), (3, 3), ("complete", "complete"), ("COMPLETE", "complete")])
    def test_valid_phases(self, value, expected) -> None:
        assert parse_phase(value) == expected

    def test_empty_defaults_to_one(self) -> None:
        assert parse_phase(None) == 1
        assert parse_phase("") == 1

    @pytest.mark.parametrize("value", ["0", "4", "done", "phase1"])
    def test_invalid_phase(self, value) -> None:
        with pytest.raises(ValueError):
            parse_phase(value)


class TestConfig:
    """Tests for Config class."""

    def test_from_env_defaults(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Defaults match the documented environment defaults."""
        config = Config.from_env(tmp_path)

        assert config.workspace == tmp_path
        assert config.loop.max_iterations == 500
        assert config.loop.target_phase == 1
        assert config.loop.agent_command == "opencode"
        assert config.loop.agent_timeout is None
        assert config.loop.iteration_delay == 2.0
        assert config.meta.cycle_delay == 5.0
        assert config.backend.url == "http://localhost:11434"
        assert config.backend.candidates == DEFAULT_MODEL_CANDIDATES
        assert config.log_level == "INFO"

    def test_from_env_with_values(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Environment variables override defaults."""
        clean_env.setenv("RALPH_MAX_ITERATIONS", "3")
        clean_env.setenv("RALPH_TARGET_PHASE", "complete")
        clean_env.setenv("OLLAMA_HOST", "http://host.docker.internal:11434")
        clean_env.setenv("RALPH_AGENT_COMMAND", "opencode --quiet")
        clean_env.setenv("RALPH_AGENT_TIMEOUT", "900")

        config = Config.from_env(tmp_path)

        assert config.loop.max_iterations == 3
        assert config.loop.target_phase == "complete"
        assert config.backend.url == "http://host.docker.internal:11434"
        assert config.loop.agent_command == "opencode --quiet"
        assert config.loop.agent_timeout == 900.0

    def test_yaml_file_loaded(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """ralph.yaml sections are read, and env still wins."""
        (tmp_path / "ralph.yaml").write_text(
            "loop:\n"
            "  max_iterations: 42\n"
            "  target_phase: 2\n"
            "meta:\n"
            "  switch_min_iterations: 10\n"
            "  rebuild_command: make image\n"
            "backend:\n"
            "  candidates: [a:1b, b:2b]\n"
        )
        clean_env.setenv("RALPH_MAX_ITERATIONS", "7")

        config = Config.from_env(tmp_path)

        assert config.loop.max_iterations == 7
        assert config.loop.target_phase == 2
        assert config.meta.switch_min_iterations == 10
        assert config.meta.rebuild_command == "make image"
        assert config.backend.candidates == ["a:1b", "b:2b"]

    def test_invalid_phase_in_env_raises(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        clean_env.setenv("RALPH_TARGET_PHASE", "9")
        with pytest.raises(ValueError):
            Config.from_env(tmp_path)

    def test_validate_ok(self, tmp_path: Path) -> None:
        assert Config(workspace=tmp_path).validate() == []

    def test_validate_errors(self, tmp_path: Path) -> None:
        config = Config(workspace=tmp_path / "missing")
        config.loop.max_iterations = 0
        config.backend.url = "localhost:11434"
        config.backend.candidates = []

        errors = config.validate()

        assert any("does not exist" in e for e in errors)
        assert any("max_iterations" in e for e in errors)
        assert any("http" in e for e in errors)
        assert any("candidate" in e for e in errors)

    def test_paths(self, tmp_path: Path) -> None:
        config = Config(workspace=tmp_path)

        assert config.prompt_path == tmp_path / "RALPH_PROMPT.md"
        assert config.progress_path == tmp_path / "ralph-logs" / "progress.md"
        assert config.transcript_path == tmp_path / "ralph-logs" / "session.log"
        assert config.learnings_path == tmp_path / "ralph-meta" / "LEARNINGS.md"
        assert config.additions_path == tmp_path / "ralph-meta" / "PROMPT_ADDITIONS.md"
        assert config.manifest_hash_path == tmp_path / "ralph-meta" / ".dockerfile_hash"
        assert config.model_config_path == tmp_path / ".opencode.json"


class TestSectionConfigs:
    """Tests for section dataclasses."""

    def test_loop_config_from_empty(self) -> None:
        assert LoopConfig.from_dict({}) == LoopConfig()

    def test_meta_config_from_empty(self) -> None:
        assert MetaConfig.from_dict({}) == MetaConfig()

    def test_meta_config_max_cycles(self) -> None:
        assert MetaConfig.from_dict({"meta": {"max_cycles": 3}}).max_cycles == 3
