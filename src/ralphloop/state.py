"""Persisted meta-loop documents: learnings and prompt additions.

Both documents are free text. Writes replace the whole file atomically so a
reader sees either the previous or the new content, never a partial write.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

LEARNINGS_TEMPLATE = """# Learnings

Accumulated wisdom from failed iterations. The builder reads this.

## Rules

## Patterns That Work

## Patterns That Fail

"""

ADDITIONS_TEMPLATE = """# Prompt Additions

Additional context appended to the task prompt for each builder run.
Meta-loop updates this based on observed failures.

---

"""


def _target_mode(path: Path) -> int:
    """Permission bits for a replaced file: the existing ones, else 0o666 minus umask."""
    if path.exists():
        return stat.S_IMODE(path.stat().st_mode)
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def atomic_write_text(path: Path, content: str) -> None:
    """Replace a file's content atomically.

    The content is written to a temporary file in the same directory and
    moved over the target with os.replace. The target keeps its permission
    bits; a new file gets the umask default.

    Args:
        path: Target file.
        content: New content.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = _target_mode(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class TextDocument:
    """A free-text document that is only ever replaced whole."""

    def __init__(self, path: Path, template: str = ""):
        self.path = Path(path)
        self.template = template

    def exists(self) -> bool:
        return self.path.exists()

    def ensure(self) -> bool:
        """Write the initial template if the document is missing.

        Returns:
            True if the document was created.
        """
        if self.path.exists():
            return False
        atomic_write_text(self.path, self.template)
        logger.info(f"Initialized {self.path}")
        return True

    def read(self) -> Optional[str]:
        """Read the document, or None when it does not exist."""
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8", errors="replace")

    def replace(self, content: str) -> None:
        """Replace the document content."""
        atomic_write_text(self.path, content)


class LearningsStore(TextDocument):
    """Learnings document fed back into the builder prompt."""

    def __init__(self, path: Path):
        super().__init__(path, LEARNINGS_TEMPLATE)

    def append_analysis(self, analysis: str, cycle: int) -> None:
        """Append an analysis narrative under a dated heading.

        Args:
            analysis: Narrative text from the failure analyzer.
            cycle: Meta-loop cycle number that produced it.
        """
        text = analysis.strip()
        if not text:
            return
        current = self.read() or self.template
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        section = f"\n## Analysis (meta iteration {cycle}, {stamp})\n\n{text}\n"
        self.replace(current.rstrip("\n") + "\n" + section)
        logger.info(f"Learnings updated from meta iteration {cycle}")


class AdditionsStore(TextDocument):
    """Prompt additions document appended to the builder prompt."""

    def __init__(self, path: Path):
        super().__init__(path, ADDITIONS_TEMPLATE)
