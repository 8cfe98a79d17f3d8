"""Tests for the learnings and additions documents."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from ralphloop.state import (
    ADDITIONS_TEMPLATE,
    LEARNINGS_TEMPLATE,
    AdditionsStore,
    LearningsStore,
    atomic_write_text,
)


class TestAtomicWrite:
    """Tests for atomic_write_text."""

    def test_creates_parent_dirs(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "file.txt"
        atomic_write_text(target, "hello")
        assert target.read_text() == "hello"

    def test_replaces_content(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        target.write_text("old")
        atomic_write_text(target, "new")
        assert target.read_text() == "new"

    def test_failed_replace_keeps_previous(self, tmp_path: Path) -> None:
        """A failure before the rename leaves the old file intact and no temp files."""
        target = tmp_path / "file.txt"
        target.write_text("old")

        with patch("ralphloop.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write_text(target, "new")

        assert target.read_text() == "old"
        assert os.listdir(tmp_path) == ["file.txt"]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
    def test_new_file_uses_umask(self, tmp_path: Path) -> None:
        target = tmp_path / "LEARNINGS.md"
        old_umask = os.umask(0o022)
        try:
            atomic_write_text(target, "content")
        finally:
            os.umask(old_umask)

        assert stat.S_IMODE(target.stat().st_mode) == 0o644

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
    def test_keeps_existing_mode(self, tmp_path: Path) -> None:
        target = tmp_path / ".opencode.json"
        target.write_text("{}")
        target.chmod(0o640)

        atomic_write_text(target, '{"model": "x"}')

        assert stat.S_IMODE(target.stat().st_mode) == 0o640
        assert target.read_text() == '{"model": "x"}'


class TestLearningsStore:
    """Tests for LearningsStore."""

    def test_ensure_writes_template_once(self, tmp_path: Path) -> None:
        store = LearningsStore(tmp_path / "LEARNINGS.md")

        assert store.ensure() is True
        assert store.read() == LEARNINGS_TEMPLATE

        store.replace("custom")
        assert store.ensure() is False
        assert store.read() == "custom"

    def test_read_missing_returns_none(self, tmp_path: Path) -> None:
        assert LearningsStore(tmp_path / "missing.md").read() is None

    def test_read_tolerates_invalid_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "LEARNINGS.md"
        path.write_bytes(b"# Learnings\n\xff\xfe rule\n")

        content = LearningsStore(path).read()

        assert content.startswith("# Learnings")
        assert "rule" in content

    def test_append_analysis(self, tmp_path: Path) -> None:
        store = LearningsStore(tmp_path / "LEARNINGS.md")
        store.ensure()

        store.append_analysis("- cargo build fails on missing crate\n", cycle=2)

        content = store.read()
        assert content.startswith("# Learnings")
        assert "## Analysis (meta iteration 2," in content
        assert "- cargo build fails on missing crate" in content

    def test_append_blank_analysis_is_noop(self, tmp_path: Path) -> None:
        store = LearningsStore(tmp_path / "LEARNINGS.md")
        store.ensure()
        store.append_analysis("   \n", cycle=1)
        assert store.read() == LEARNINGS_TEMPLATE


class TestAdditionsStore:
    """Tests for AdditionsStore."""

    def test_template(self, tmp_path: Path) -> None:
        store = AdditionsStore(tmp_path / "PROMPT_ADDITIONS.md")
        store.ensure()
        assert store.read() == ADDITIONS_TEMPLATE
