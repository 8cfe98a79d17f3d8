"""Tests for environment manifest tracking."""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from ralphloop.environment import EnvironmentManager, manifest_hash


@pytest.fixture
def manager(workspace: Path) -> EnvironmentManager:
    return EnvironmentManager(
        manifest_path=workspace / "Dockerfile",
        hash_path=workspace / "ralph-meta" / ".dockerfile_hash",
        rebuild_command=f"{sys.executable} -c \"print('built')\"",
        cwd=workspace,
    )


def test_manifest_hash(tmp_path: Path) -> None:
    path = tmp_path / "Dockerfile"
    path.write_bytes(b"FROM rust:1.80\n")
    assert manifest_hash(path) == hashlib.md5(b"FROM rust:1.80\n").hexdigest()
    assert manifest_hash(tmp_path / "missing") is None


class TestEnvironmentManager:
    """Tests for EnvironmentManager."""

    def test_no_stored_hash_means_no_rebuild(self, manager: EnvironmentManager) -> None:
        assert manager.stored_hash() is None
        assert not manager.needs_rebuild()

    def test_unchanged_manifest_no_rebuild(self, manager: EnvironmentManager) -> None:
        manager.save_hash()

        with patch.object(manager, "rebuild") as rebuild:
            result = manager.check_and_rebuild()

        rebuild.assert_not_called()
        assert not result.triggered

    def test_changed_manifest_rebuilds_once(self, manager: EnvironmentManager) -> None:
        old = manager.save_hash()
        manager.manifest_path.write_text("FROM ubuntu:24.04\nRUN apt-get install -y cargo\n")

        first = manager.check_and_rebuild()
        second = manager.check_and_rebuild()

        assert first.triggered
        assert first.success
        assert "built" in first.output
        assert first.old_hash == old
        assert manager.stored_hash() == manager.current_hash() != old
        assert not second.triggered

    def test_failed_rebuild_keeps_old_hash(self, manager: EnvironmentManager) -> None:
        old = manager.save_hash()
        manager.manifest_path.write_text("FROM broken\n")

        with patch.object(manager, "rebuild", return_value=(False, "build failed")):
            result = manager.check_and_rebuild()

        assert result.triggered
        assert not result.success
        assert result.error == "build failed"
        assert manager.stored_hash() == old
        assert manager.needs_rebuild()

    def test_missing_rebuild_command(self, workspace: Path) -> None:
        manager = EnvironmentManager(
            workspace / "Dockerfile",
            workspace / ".hash",
            rebuild_command="no-such-compose-binary build",
        )

        success, output = manager.rebuild()

        assert not success
        assert "not found" in output

    def test_save_hash_without_manifest(self, tmp_path: Path) -> None:
        manager = EnvironmentManager(tmp_path / "Dockerfile", tmp_path / ".hash")
        assert manager.save_hash() is None
        assert not (tmp_path / ".hash").exists()
