"""Configuration management for ralphloop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml
from dotenv import load_dotenv

# Accepted values for the target phase
Phase = Union[int, str]
VALID_PHASES: tuple[Phase, ...] = (1, 2, 3, "complete")

DEFAULT_BACKEND_URL = "http://localhost:11434"
DEFAULT_MODEL = "qwen2.5-coder:14b"
DEFAULT_MODEL_CANDIDATES = [
    "qwen2.5-coder:14b",
    "deepseek-coder-v2:16b",
    "codellama:13b",
]


def parse_phase(value: Union[str, int, None]) -> Phase:
    """Normalize a target phase value.

    Args:
        value: Raw phase value from the environment, YAML or CLI.

    Returns:
        1, 2, 3 or "complete".

    Raises:
        ValueError: If the value is not a known phase.
    """
    if value is None or value == "":
        return 1
    text = str(value).strip().lower()
    if text == "complete":
        return "complete"
    if text in ("1", "2", "3"):
        return int(text)
    raise ValueError(f"Invalid target phase: {value!r}. Use 1, 2, 3 or 'complete'.")


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class LoopConfig:
    """Settings for the inner build loop."""

    max_iterations: int = 500
    target_phase: Phase = 1
    prompt_file: str = "RALPH_PROMPT.md"
    agent_command: str = "opencode"
    agent_timeout: Optional[float] = None
    iteration_delay: float = 2.0
    logs_dir: str = "ralph-logs"

    @classmethod
    def from_dict(cls, data: dict) -> LoopConfig:
        """Create LoopConfig from the `loop` section of a YAML document."""
        loop_data = data.get("loop", {}) or {}
        timeout = loop_data.get("agent_timeout")
        return cls(
            max_iterations=int(loop_data.get("max_iterations", 500)),
            target_phase=parse_phase(loop_data.get("target_phase", 1)),
            prompt_file=loop_data.get("prompt_file", "RALPH_PROMPT.md"),
            agent_command=loop_data.get("agent_command", "opencode"),
            agent_timeout=float(timeout) if timeout is not None else None,
            iteration_delay=float(loop_data.get("iteration_delay", 2.0)),
            logs_dir=loop_data.get("logs_dir", "ralph-logs"),
        )


@dataclass
class MetaConfig:
    """Settings for the outer supervisory loop."""

    meta_dir: str = "ralph-meta"
    cycle_delay: float = 5.0
    analysis_timeout: Optional[float] = None
    switch_min_iterations: int = 20
    switch_min_errors: int = 50
    additions_min_lines: int = 5
    manifest_file: str = "Dockerfile"
    rebuild_command: str = "docker-compose build"
    max_cycles: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> MetaConfig:
        """Create MetaConfig from the `meta` section of a YAML document."""
        meta_data = data.get("meta", {}) or {}
        timeout = meta_data.get("analysis_timeout")
        max_cycles = meta_data.get("max_cycles")
        return cls(
            meta_dir=meta_data.get("meta_dir", "ralph-meta"),
            cycle_delay=float(meta_data.get("cycle_delay", 5.0)),
            analysis_timeout=float(timeout) if timeout is not None else None,
            switch_min_iterations=int(meta_data.get("switch_min_iterations", 20)),
            switch_min_errors=int(meta_data.get("switch_min_errors", 50)),
            additions_min_lines=int(meta_data.get("additions_min_lines", 5)),
            manifest_file=meta_data.get("manifest_file", "Dockerfile"),
            rebuild_command=meta_data.get("rebuild_command", "docker-compose build"),
            max_cycles=int(max_cycles) if max_cycles is not None else None,
        )


@dataclass
class BackendConfig:
    """Settings for the model-serving backend."""

    url: str = DEFAULT_BACKEND_URL
    provider: str = "ollama"
    default_model: str = DEFAULT_MODEL
    candidates: list[str] = field(default_factory=lambda: list(DEFAULT_MODEL_CANDIDATES))
    timeout: Optional[float] = 30.0
    model_config_file: str = ".opencode.json"

    @classmethod
    def from_dict(cls, data: dict) -> BackendConfig:
        """Create BackendConfig from the `backend` section of a YAML document."""
        backend_data = data.get("backend", {}) or {}
        return cls(
            url=backend_data.get("url", DEFAULT_BACKEND_URL),
            provider=backend_data.get("provider", "ollama"),
            default_model=backend_data.get("default_model", DEFAULT_MODEL),
            candidates=list(backend_data.get("candidates", DEFAULT_MODEL_CANDIDATES)),
            timeout=backend_data.get("timeout", 30.0),
            model_config_file=backend_data.get("model_config_file", ".opencode.json"),
        )


@dataclass
class Config:
    """Configuration settings for ralphloop."""

    workspace: Path = field(default_factory=Path.cwd)
    log_level: str = "INFO"
    loop: LoopConfig = field(default_factory=LoopConfig)
    meta: MetaConfig = field(default_factory=MetaConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    @classmethod
    def load_from_file(cls, workspace: Path) -> Config:
        """Load config from `ralph.yaml` in the workspace, or defaults."""
        config_path = workspace / "ralph.yaml"
        data: dict = {}
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        return cls(
            workspace=workspace,
            log_level=data.get("log_level", "INFO"),
            loop=LoopConfig.from_dict(data),
            meta=MetaConfig.from_dict(data),
            backend=BackendConfig.from_dict(data),
        )

    @classmethod
    def from_env(cls, workspace: Optional[Path] = None) -> Config:
        """Load configuration from the YAML file and environment variables.

        Environment variables take precedence over `ralph.yaml`.

        Args:
            workspace: Optional path to the workspace. Defaults to CWD.

        Returns:
            Config instance.
        """
        load_dotenv()

        root = Path(workspace) if workspace else Path.cwd()
        config = cls.load_from_file(root)

        loop = config.loop
        loop.max_iterations = int(os.getenv("RALPH_MAX_ITERATIONS", str(loop.max_iterations)))
        loop.target_phase = parse_phase(os.getenv("RALPH_TARGET_PHASE", str(loop.target_phase)))
        loop.prompt_file = os.getenv("RALPH_PROMPT_FILE", loop.prompt_file)
        loop.agent_command = os.getenv("RALPH_AGENT_COMMAND", loop.agent_command)
        loop.iteration_delay = float(os.getenv("RALPH_ITERATION_DELAY", str(loop.iteration_delay)))
        if "RALPH_AGENT_TIMEOUT" in os.environ:
            loop.agent_timeout = _optional_float(os.environ["RALPH_AGENT_TIMEOUT"])

        meta = config.meta
        meta.cycle_delay = float(os.getenv("RALPH_META_DELAY", str(meta.cycle_delay)))
        meta.rebuild_command = os.getenv("RALPH_REBUILD_COMMAND", meta.rebuild_command)

        config.backend.url = os.getenv("OLLAMA_HOST", config.backend.url)
        config.log_level = os.getenv("RALPH_LOG_LEVEL", config.log_level)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if not self.workspace.exists():
            errors.append(f"Workspace does not exist: {self.workspace}")

        if self.loop.max_iterations < 1:
            errors.append("max_iterations must be at least 1")

        if self.loop.target_phase not in VALID_PHASES:
            errors.append(f"Invalid target phase: {self.loop.target_phase}")

        if not self.loop.agent_command.strip():
            errors.append("agent_command must not be empty")

        if not self.backend.candidates:
            errors.append("At least one model candidate is required")

        if not self.backend.url.startswith(("http://", "https://")):
            errors.append(f"Backend URL must be http(s): {self.backend.url}")

        return errors

    @property
    def prompt_path(self) -> Path:
        """Path to the base task prompt."""
        return self.workspace / self.loop.prompt_file

    @property
    def logs_dir(self) -> Path:
        """Directory holding the progress log and session transcript."""
        return self.workspace / self.loop.logs_dir

    @property
    def progress_path(self) -> Path:
        """Path to progress.md."""
        return self.logs_dir / "progress.md"

    @property
    def transcript_path(self) -> Path:
        """Path to the cumulative session log."""
        return self.logs_dir / "session.log"

    @property
    def meta_dir(self) -> Path:
        """Directory holding learnings, additions and meta-loop state."""
        return self.workspace / self.meta.meta_dir

    @property
    def learnings_path(self) -> Path:
        """Path to LEARNINGS.md."""
        return self.meta_dir / "LEARNINGS.md"

    @property
    def additions_path(self) -> Path:
        """Path to PROMPT_ADDITIONS.md."""
        return self.meta_dir / "PROMPT_ADDITIONS.md"

    @property
    def meta_log_path(self) -> Path:
        """Path to meta.log."""
        return self.meta_dir / "meta.log"

    @property
    def manifest_hash_path(self) -> Path:
        """Path to the last-seen manifest hash."""
        return self.meta_dir / ".dockerfile_hash"

    @property
    def manifest_path(self) -> Path:
        """Path to the environment manifest."""
        return self.workspace / self.meta.manifest_file

    @property
    def model_config_path(self) -> Path:
        """Path to the active model configuration."""
        return self.workspace / self.backend.model_config_file
