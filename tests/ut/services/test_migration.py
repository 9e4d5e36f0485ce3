"""旧版布局迁移单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from repograder.services.repo import migration
from repograder.services.repo.migration import (
    migrate_legacy_evaluation_file,
    migrate_legacy_logs,
    move_with_fallback,
)


class TestMoveWithFallback:
    def test_move(self, tmp_path: Path) -> None:
        src = tmp_path / "a.txt"
        src.write_text("x", encoding="utf-8")
        move_with_fallback(src, tmp_path / "sub" / "b.txt")
        assert not src.exists()
        assert (tmp_path / "sub" / "b.txt").read_text(encoding="utf-8") == "x"

    def test_copy_when_replace_fails(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        src = tmp_path / "a.txt"
        src.write_text("x", encoding="utf-8")

        def _cross_device(self, target):
            raise OSError(18, "Invalid cross-device link")

        monkeypatch.setattr(Path, "replace", _cross_device)
        move_with_fallback(src, tmp_path / "b.txt")
        assert (tmp_path / "b.txt").read_text(encoding="utf-8") == "x"
        assert not src.exists()


class TestMigrateEvaluationFile:
    def test_target_exists_no_migration(self, tmp_path: Path) -> None:
        target = tmp_path / "eval" / "001" / "a.json"
        target.parent.mkdir(parents=True)
        target.write_text("new", encoding="utf-8")
        (tmp_path / "eval" / "001.json").write_text("old", encoding="utf-8")
        assert migrate_legacy_evaluation_file(target, 1, tmp_path / "eval", tmp_path) is False
        assert target.read_text(encoding="utf-8") == "new"

    def test_older_parent_location(self, tmp_path: Path) -> None:
        (tmp_path / "001.json").write_text("older", encoding="utf-8")
        target = tmp_path / "eval" / "001" / "a.json"
        assert migrate_legacy_evaluation_file(target, 1, tmp_path / "eval", tmp_path) is True
        assert target.read_text(encoding="utf-8") == "older"

    def test_nothing_to_migrate(self, tmp_path: Path) -> None:
        target = tmp_path / "eval" / "001" / "a.json"
        assert migrate_legacy_evaluation_file(target, 1, tmp_path / "eval", None) is False
        assert target.parent.is_dir()


class TestMigrateLogs:
    def test_no_legacy_dir(self, tmp_path: Path) -> None:
        assert migrate_legacy_logs(tmp_path / "repo", tmp_path / "eval") == 0

    def test_moves_nested_files(self, tmp_path: Path) -> None:
        legacy = tmp_path / "repo" / ".eval" / "logs"
        (legacy / "nested").mkdir(parents=True)
        (legacy / "a.log").write_text("a", encoding="utf-8")
        (legacy / "nested" / "b.log").write_text("b", encoding="utf-8")
        assert migrate_legacy_logs(tmp_path / "repo", tmp_path / "eval") == 2
        assert sorted(p.name for p in (tmp_path / "eval" / "logs").iterdir()) == ["a.log", "b.log"]
        assert not (tmp_path / "repo" / ".eval").exists()

    def test_other_eval_content_kept(self, tmp_path: Path) -> None:
        legacy = tmp_path / "repo" / ".eval" / "logs"
        legacy.mkdir(parents=True)
        (legacy / "a.log").write_text("a", encoding="utf-8")
        (tmp_path / "repo" / ".eval" / "notes.txt").write_text("keep", encoding="utf-8")
        migrate_legacy_logs(tmp_path / "repo", tmp_path / "eval")
        assert (tmp_path / "repo" / ".eval" / "notes.txt").is_file()
        assert not legacy.exists()

    def test_failure_not_fatal(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        legacy = tmp_path / "repo" / ".eval" / "logs"
        legacy.mkdir(parents=True)
        (legacy / "a.log").write_text("a", encoding="utf-8")

        def _boom(source, target):
            raise OSError("read-only")

        monkeypatch.setattr(migration, "move_with_fallback", _boom)
        assert migrate_legacy_logs(tmp_path / "repo", tmp_path / "eval") == 0
        assert (legacy / "a.log").is_file()
