"""Environment manifest tracking and rebuilds.

A change in the manifest's content hash since it was last recorded is the
only thing that triggers a rebuild.
"""

from __future__ import annotations

import hashlib
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .state import atomic_write_text

logger = logging.getLogger(__name__)


def manifest_hash(path: Path) -> Optional[str]:
    """md5 hex digest of a file, or None if it does not exist."""
    if not path.exists():
        return None
    return hashlib.md5(path.read_bytes()).hexdigest()


@dataclass
class RebuildResult:
    """Result of a rebuild check."""

    triggered: bool
    success: bool = True
    old_hash: Optional[str] = None
    new_hash: Optional[str] = None
    output: str = ""
    error: Optional[str] = None


class EnvironmentManager:
    """Watches the manifest and rebuilds the environment when it changes."""

    def __init__(
        self,
        manifest_path: Path,
        hash_path: Path,
        rebuild_command: str = "docker-compose build",
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the manager.

        Args:
            manifest_path: The environment manifest (e.g. Dockerfile).
            hash_path: Where the last-seen hash is stored.
            rebuild_command: Command run when the manifest changed.
            cwd: Working directory for the rebuild command.
            timeout: Maximum seconds for a rebuild.
        """
        self.manifest_path = Path(manifest_path)
        self.hash_path = Path(hash_path)
        self.rebuild_command = rebuild_command
        self.cwd = cwd
        self.timeout = timeout

    def stored_hash(self) -> Optional[str]:
        if not self.hash_path.exists():
            return None
        return self.hash_path.read_text(encoding="utf-8").strip() or None

    def current_hash(self) -> Optional[str]:
        return manifest_hash(self.manifest_path)

    def save_hash(self) -> Optional[str]:
        """Record the manifest's current hash.

        Returns:
            The saved hash, or None when there is no manifest.
        """
        digest = self.current_hash()
        if digest is not None:
            atomic_write_text(self.hash_path, digest + "\n")
        return digest

    def needs_rebuild(self) -> bool:
        """Check whether the manifest changed since the stored hash.

        With no stored hash there is nothing to compare against, so no rebuild.
        """
        old = self.stored_hash()
        new = self.current_hash()
        if old is None or new is None:
            return False
        return old != new

    def rebuild(self) -> tuple[bool, str]:
        """Run the rebuild command.

        Returns:
            (success, combined output or error text).
        """
        cmd_list = shlex.split(self.rebuild_command, posix=True)
        logger.info(f"Rebuilding environment: {self.rebuild_command}")
        try:
            result = subprocess.run(
                cmd_list,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"Rebuild timed out after {self.timeout} seconds"
        except FileNotFoundError:
            return False, f"Rebuild command not found: {cmd_list[0] if cmd_list else ''}"
        except OSError as exc:
            return False, f"Rebuild failed: {exc}"

        if result.returncode != 0:
            return False, result.stdout or f"Rebuild exited with code {result.returncode}"
        return True, result.stdout or ""

    def check_and_rebuild(self) -> RebuildResult:
        """Rebuild if the manifest changed, then record the new hash.

        The new hash is stored only after a successful rebuild, so a failed
        rebuild is retried on the next check.
        """
        old = self.stored_hash()
        if not self.needs_rebuild():
            return RebuildResult(triggered=False, old_hash=old, new_hash=old)

        new = self.current_hash()
        logger.info("Manifest changed, rebuild needed")
        success, output = self.rebuild()
        if not success:
            logger.error(f"Rebuild failed: {output[-500:]}")
            return RebuildResult(
                triggered=True, success=False, old_hash=old, new_hash=new, error=output
            )

        self.save_hash()
        logger.info("Environment rebuilt")
        return RebuildResult(triggered=True, success=True, old_hash=old, new_hash=new, output=output)
