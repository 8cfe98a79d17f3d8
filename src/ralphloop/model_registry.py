"""Model registry backed by an Ollama-compatible API.

The registry lists and pulls models and owns the single active model
configuration consumed by the agent (`.opencode.json`).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import httpx

from .config import DEFAULT_BACKEND_URL
from .state import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelConfig:
    """The active model configuration."""

    provider: str
    model: str
    base_url: str

    def to_dict(self) -> dict:
        return {"provider": self.provider, "model": self.model, "baseUrl": self.base_url}

    @classmethod
    def from_dict(cls, data: dict) -> ModelConfig:
        """Create ModelConfig from its JSON form.

        Raises:
            KeyError: If a required field is missing.
        """
        return cls(
            provider=data["provider"],
            model=data["model"],
            base_url=data.get("baseUrl", data.get("base_url", DEFAULT_BACKEND_URL)),
        )


class ModelConfigStore:
    """Single canonical location of the active ModelConfig.

    Writes replace the file atomically; readers see either the previous or
    the new configuration.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[ModelConfig]:
        """Read the current configuration, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return ModelConfig.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning(f"Invalid model config at {self.path}: {exc}")
            return None

    def write(self, config: ModelConfig) -> None:
        """Replace the configuration wholesale."""
        atomic_write_text(self.path, json.dumps(config.to_dict(), indent=2) + "\n")


def select_next_model(current: Optional[str], candidates: Sequence[str]) -> str:
    """Choose the model to switch to.

    Args:
        current: The active model, if any.
        candidates: Ordered candidate list.

    Returns:
        The candidate after `current` (wrapping around), or the first
        candidate when `current` is not in the list.

    Raises:
        ValueError: If there are no candidates.
    """
    if not candidates:
        raise ValueError("No model candidates configured")
    if current in candidates:
        return candidates[(list(candidates).index(current) + 1) % len(candidates)]
    return candidates[0]


class ModelRegistry:
    """Client for the model-serving backend."""

    def __init__(
        self,
        config_store: ModelConfigStore,
        base_url: str = DEFAULT_BACKEND_URL,
        provider: str = "ollama",
        timeout: Optional[float] = 30.0,
    ):
        """Initialize the registry.

        Args:
            config_store: Where the active model configuration lives.
            base_url: Backend API base URL.
            provider: Provider identifier written to the model config.
            timeout: Request timeout in seconds. None disables it.
        """
        self.config_store = config_store
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.timeout = timeout

    def list_models(self) -> set[str]:
        """Query the backend inventory.

        Returns:
            Model names; empty when the backend is unreachable.
        """
        try:
            response = httpx.get(f"{self.base_url}/api/tags", timeout=self.timeout)
            if response.status_code != 200:
                logger.warning(f"Model list returned status {response.status_code}")
                return set()
            data = response.json()
            if not isinstance(data, dict):
                logger.warning("Model list payload is not an object")
                return set()
            models = data.get("models") or []
            if not isinstance(models, list):
                return set()
            return {
                m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)
            }
        except (
            httpx.HTTPError,
            httpx.InvalidURL,
            ValueError,
            TypeError,
            KeyError,
            AttributeError,
        ) as exc:
            logger.debug(f"Backend not available: {exc}")
            return set()

    def pull_model(self, name: str) -> bool:
        """Pull a model, streaming progress to the log.

        Args:
            name: Model identifier.

        Returns:
            True once the backend reports completion without error.
        """
        logger.info(f"Pulling model: {name}")
        try:
            with httpx.stream(
                "POST",
                f"{self.base_url}/api/pull",
                json={"name": name},
                timeout=self.timeout,
            ) as response:
                if response.status_code != 200:
                    logger.error(f"Pull of {name} returned status {response.status_code}")
                    return False
                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(event, dict):
                        continue
                    if event.get("error"):
                        logger.error(f"Pull of {name} failed: {event['error']}")
                        return False
                    if event.get("status"):
                        logger.info(f"  {event['status']}")
        except httpx.TimeoutException:
            logger.error(f"Pull of {name} timed out after {self.timeout}s")
            return False
        except (httpx.HTTPError, httpx.InvalidURL, AttributeError) as exc:
            logger.error(f"Pull of {name} failed: {exc}")
            return False

        logger.info(f"Model {name} ready")
        return True

    def current_model(self) -> Optional[str]:
        config = self.config_store.read()
        return config.model if config else None

    def switch_model(self, name: str) -> ModelConfig:
        """Make `name` the active model, pulling it first if missing.

        Args:
            name: Model identifier.

        Returns:
            The new active configuration.
        """
        logger.info(f"Switching to model: {name}")
        if name not in self.list_models():
            if not self.pull_model(name):
                logger.warning(f"Pull of {name} did not complete; switching anyway")

        config = ModelConfig(provider=self.provider, model=name, base_url=self.base_url)
        self.config_store.write(config)
        logger.info(f"Model switched to {name}")
        return config

    def ensure_default_model(self, default: str) -> None:
        """Pull the default model when the backend has none."""
        if not self.list_models():
            logger.info("No models found, pulling default...")
            self.pull_model(default)

    def ensure_config(self, default: str) -> ModelConfig:
        """Return the active configuration, writing a default one if missing."""
        config = self.config_store.read()
        if config is None:
            config = ModelConfig(provider=self.provider, model=default, base_url=self.base_url)
            self.config_store.write(config)
            logger.info(f"Created model config with {default}")
        return config
