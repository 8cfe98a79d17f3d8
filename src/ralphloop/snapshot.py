"""Workspace snapshots using GitPython.

Every inner iteration starts by committing whatever the previous iteration
produced, so an interrupted run loses at most the iteration in flight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)

# Paths shown in a truncated change listing
LISTING_LIMIT = 10


@dataclass
class SnapshotResult:
    """Result of a snapshot operation."""

    changed: bool
    summary: str
    commit_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class SnapshotStore:
    """Commits workspace state after each iteration.

    snapshot() never raises. Git failures come back as a result with
    `error` set so the loop can log them and carry on.
    """

    def __init__(self, workspace: Path):
        """Initialize the snapshot store.

        Args:
            workspace: Path to the workspace being built.
        """
        self.workspace = Path(workspace)
        self._repo: Optional[git.Repo] = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            self._repo = git.Repo(self.workspace)
        return self._repo

    def ensure_repository(self) -> bool:
        """Initialize a git repository with an initial commit if needed.

        Returns:
            True if a new repository was created.
        """
        try:
            self._repo = git.Repo(self.workspace)
            return False
        except (InvalidGitRepositoryError, NoSuchPathError):
            pass

        self.workspace.mkdir(parents=True, exist_ok=True)
        self._repo = git.Repo.init(self.workspace)
        logger.info(f"Initialized git repository at {self.workspace}")
        try:
            self._repo.git.add(all=True)
            self._repo.index.commit("init")
        except GitCommandError as exc:
            logger.warning(f"Initial commit failed: {exc}")
        return True

    def pending_changes(self) -> List[str]:
        """List changed paths in the working tree (staged, unstaged, untracked).

        Returns:
            Porcelain status lines, empty on error.
        """
        try:
            output = self.repo.git.status("--porcelain")
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError) as exc:
            logger.warning(f"Could not read git status: {exc}")
            return []
        return [line for line in output.splitlines() if line.strip()]

    def diff_summary(self) -> str:
        """Summarize the most recent commit against its parent.

        Returns:
            The `--stat` summary line, or "no changes".
        """
        try:
            if len(self.repo.head.commit.parents) == 0:
                return "initial snapshot"
            stat = self.repo.git.diff("--stat", "HEAD~1", "HEAD")
        except (GitCommandError, ValueError) as exc:
            logger.debug(f"No diff summary available: {exc}")
            return "no changes"
        lines = [line for line in stat.splitlines() if line.strip()]
        return lines[-1].strip() if lines else "no changes"

    def snapshot(self, label: str) -> SnapshotResult:
        """Stage everything and commit it under the given label.

        Args:
            label: Commit message.

        Returns:
            SnapshotResult; `changed` is False when there was nothing to commit.
        """
        try:
            repo = self.repo
            repo.git.add(all=True)
            if not repo.is_dirty(untracked_files=True):
                return SnapshotResult(changed=False, summary="no changes")

            commit = repo.index.commit(label)
            commit_hash = commit.hexsha[:8]
            summary = self.diff_summary()
            logger.info(f"Snapshot {commit_hash}: {label} ({summary})")
            return SnapshotResult(changed=True, summary=summary, commit_hash=commit_hash)

        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, ValueError) as exc:
            logger.error(f"Snapshot '{label}' failed: {exc}")
            return SnapshotResult(changed=False, summary="snapshot failed", error=str(exc))


def format_change_listing(changes: List[str], limit: int = LISTING_LIMIT) -> str:
    """Format a truncated listing of changed paths.

    Args:
        changes: Porcelain status lines.
        limit: Maximum lines to show.

    Returns:
        Listing text, with an "... and N more" line when truncated.
    """
    lines = list(changes[:limit])
    if len(changes) > limit:
        lines.append(f"... and {len(changes) - limit} more")
    return "\n".join(lines)


class MockSnapshotStore:
    """Mock SnapshotStore for testing without git."""

    def __init__(self, changes: Optional[List[str]] = None, fail: bool = False):
        self.labels: List[str] = []
        self.changes = list(changes or [])
        self.fail = fail

    def ensure_repository(self) -> bool:
        return False

    def pending_changes(self) -> List[str]:
        return list(self.changes)

    def snapshot(self, label: str) -> SnapshotResult:
        self.labels.append(label)
        if self.fail:
            return SnapshotResult(changed=False, summary="snapshot failed", error="mock failure")
        changed = bool(self.changes)
        return SnapshotResult(
            changed=changed,
            summary=f"{len(self.changes)} files changed" if changed else "no changes",
            commit_hash=f"mock{len(self.labels):04d}" if changed else None,
        )
