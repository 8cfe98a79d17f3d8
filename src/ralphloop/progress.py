"""Progress log and session transcript for the build loop.

Both files are append-only and human-readable. The transcript accumulates raw
agent output across runs and is what completion detection scans.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ITERATION_HEADING = re.compile(r"^### Iteration \d+", re.MULTILINE)
BANNER_RULE = "=" * 40


@dataclass(frozen=True)
class IterationRecord:
    """One pass of the inner loop."""

    index: int
    start_time: datetime
    duration: float
    files_touched: int
    diff_summary: str
    changes_listing: str = ""
    agent_success: bool = True
    error: Optional[str] = None

    def to_markdown(self) -> str:
        """Render the record as a progress-log section."""
        lines = [
            f"### Iteration {self.index} - {self.start_time.strftime('%H:%M:%S')}",
            f"- Committed: {self.diff_summary}",
            f"- Duration: {self.duration:.0f}s",
            f"- Files touched: {self.files_touched}",
        ]
        if self.error:
            lines.append(f"- Agent error: {self.error}")
        if self.changes_listing:
            lines.append("```")
            lines.append(self.changes_listing)
            lines.append("```")
        lines.append("")
        return "\n".join(lines) + "\n"


class ProgressLog:
    """Markdown progress log for one inner run."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.records: list[IterationRecord] = []

    def start(self, target: str, max_iterations: int) -> None:
        """Start a fresh log for a new run."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.records = []
        header = (
            "# Ralph Progress\n\n"
            f"**Started:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"**Target:** {target}\n"
            f"**Max Iterations:** {max_iterations}\n\n"
            "## Status: RUNNING\n\n"
            "## Iterations\n\n"
        )
        self.path.write_text(header, encoding="utf-8")

    def _append(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(text)

    def append(self, record: IterationRecord) -> None:
        """Append an iteration record.

        Raises:
            ValueError: If the index does not follow the previous record.
        """
        expected = self.records[-1].index + 1 if self.records else 1
        if record.index != expected:
            raise ValueError(f"Iteration index {record.index} out of order (expected {expected})")
        self.records.append(record)
        self._append(record.to_markdown())

    def finish(self, status: str) -> None:
        """Write the terminal status footer."""
        self._append(
            f"## Status: {status}\n"
            f"**Finished:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        )

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def iteration_count(self) -> int:
        """Count iteration sections in the log file."""
        return len(ITERATION_HEADING.findall(self.read()))


class Transcript:
    """Append-only session log of raw agent output."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, chunk: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(chunk)
            if chunk and not chunk.endswith("\n"):
                f.write("\n")

    def banner(self, index: int, max_iterations: int) -> None:
        """Append the iteration banner."""
        self.append(
            f"\n{BANNER_RULE}\n"
            f"=== Iteration {index} of {max_iterations} ===\n"
            f"=== {datetime.now().strftime('%Y-%m-%d %H:%M:%S')} ===\n"
            f"{BANNER_RULE}\n"
        )

    def read(self) -> str:
        """Read the cumulative transcript."""
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8", errors="replace")


def tail_lines(text: str, count: int) -> list[str]:
    """Get the last `count` lines of a text."""
    if count <= 0:
        return []
    return text.splitlines()[-count:]
