"""RepositoryPreparationService 单元测试"""

from __future__ import annotations

import json
import threading
from datetime import date
from pathlib import Path

import pytest

from conftest import requires_git

from repograder.core.exceptions import GitServiceError
from repograder.core.models import PlaceholderRange, RepositoryPreparationRequest
from repograder.services.repo.git import GitService
from repograder.services.repo.preparation import (
    RepositoryPreparationService,
    build_repository_url,
    format_error_line,
)


class FakeGit:
    """clone 时只建 .git 目录；URL 含 fail_marker 的编号克隆失败"""

    def __init__(self, fail_marker: str | None = None) -> None:
        self.fail_marker = fail_marker
        self.cloned: list[str] = []

    def clone_or_update(self, repository_url: str, target: Path) -> Path:
        if self.fail_marker and self.fail_marker in repository_url:
            raise GitServiceError("仓库无法克隆或更新", "fatal: repository not found")
        self.cloned.append(repository_url)
        (target / ".git").mkdir(parents=True, exist_ok=True)
        return target

    def checkout_tag(self, repository: Path, tag: str) -> str:
        raise GitServiceError(f"未找到标签 '{tag}'")

    def resolve_tag_commit_time(self, repository: Path, tag: str):
        raise GitServiceError(f"未找到标签 '{tag}'")

    def checkout_latest_before(self, repository: Path, deadline: date) -> str:
        return "deadlinesha"

    def resolve_current_commit(self, repository: Path) -> str | None:
        return "headsha"


def _request(tmp_path: Path, start: int = 1, end: int = 3, **kwargs) -> RepositoryPreparationRequest:
    builder = (
        RepositoryPreparationRequest.builder()
        .repository_template(kwargs.pop("template", "https://host/s-{{number}}.git"))
        .placeholder_range(PlaceholderRange(start, end))
        .repositories_root(tmp_path / "repos")
        .evaluations_root(tmp_path / "evaluations" / "a1")
        .evaluation_file_name("a1.json")
        .evaluation_title("A1")
    )
    if "tag" in kwargs:
        builder.tag(kwargs["tag"])
    if "deadline" in kwargs:
        builder.deadline(kwargs["deadline"])
    return builder.build()


class TestBuildRepositoryUrl:
    def test_default_token(self) -> None:
        assert build_repository_url("https://h/s-{{number}}.git", None, 7) == "https://h/s-007.git"

    def test_custom_token(self) -> None:
        assert build_repository_url("git@h:s-<n>.git", "<n>", 12) == "git@h:s-012.git"

    def test_custom_token_missing_falls_back(self) -> None:
        assert build_repository_url("https://h/s-{{number}}.git", "<n>", 3) == "https://h/s-003.git"

    def test_no_token_returns_template(self) -> None:
        assert build_repository_url("https://h/shared.git", "<n>", 3) == "https://h/shared.git"

    def test_every_occurrence(self) -> None:
        assert build_repository_url("{{number}}/{{number}}", None, 1) == "001/001"


class TestFormatErrorLine:
    def test_with_cause(self) -> None:
        line = format_error_line(7, GitServiceError("仓库无法克隆或更新", "fatal: x"))
        assert line == "[007] 仓库无法克隆或更新 (fatal: x)"

    def test_without_cause(self) -> None:
        assert format_error_line(12, GitServiceError("boom")) == "[012] boom"

    def test_single_line(self) -> None:
        line = format_error_line(1, OSError("disk\nfull"))
        assert "\n" not in line


class TestPrepareRepositories:
    def test_all_success(self, tmp_path: Path) -> None:
        git = FakeGit()
        result = RepositoryPreparationService(git).prepare_repositories(_request(tmp_path))
        assert result.success
        assert [c.placeholder_value for c in result.contexts] == [1, 2, 3]
        assert git.cloned[0] == "https://host/s-001.git"
        ctx = result.contexts[0]
        assert ctx.repository_path == tmp_path / "repos" / "001"
        assert ctx.evaluation_file == tmp_path / "evaluations" / "a1" / "001" / "a1.json"
        assert ctx.logs_directory.is_dir()
        assert ctx.checkout_info.reference == "headsha"
        assert ctx.checkout_info.strategy.encode() == "HEAD"

    def test_failure_isolated(self, tmp_path: Path) -> None:
        progress: list[tuple[int, int]] = []
        svc = RepositoryPreparationService(FakeGit(fail_marker="s-002"))
        result = svc.prepare_repositories(_request(tmp_path), lambda c, t: progress.append((c, t)))
        assert [c.placeholder_value for c in result.contexts] == [1, 3]
        assert result.errors == "[002] 仓库无法克隆或更新 (fatal: repository not found)\n"
        assert result.failed_count == 1
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_seed_state_file(self, tmp_path: Path) -> None:
        svc = RepositoryPreparationService(FakeGit())
        ctx = svc.prepare_repositories(_request(tmp_path, 1, 1, deadline=date(2024, 1, 10))).contexts[0]
        data = json.loads(ctx.evaluation_file.read_text(encoding="utf-8"))
        assert data["repositoryUrl"] == "https://host/s-001.git"
        assert data["checkedOutReference"] == "deadlinesha"
        assert data["checkoutStrategy"] == "DEADLINE:2024-01-10"
        assert data["placeholderValue"] == 1
        assert data["evaluationTitle"] == "A1"
        assert data["savedAt"]

    def test_existing_state_file_kept(self, tmp_path: Path) -> None:
        target = tmp_path / "evaluations" / "a1" / "001" / "a1.json"
        target.parent.mkdir(parents=True)
        target.write_text('{"nodes": {"X": {"achievedPoints": 3}}}', encoding="utf-8")
        RepositoryPreparationService(FakeGit()).prepare_repositories(_request(tmp_path, 1, 1))
        assert json.loads(target.read_text(encoding="utf-8"))["nodes"]["X"]["achievedPoints"] == 3

    def test_legacy_flat_file_migrated(self, tmp_path: Path) -> None:
        legacy = tmp_path / "evaluations" / "a1" / "002.json"
        legacy.parent.mkdir(parents=True)
        legacy.write_text('{"checkedOutReference": "old"}', encoding="utf-8")
        result = RepositoryPreparationService(FakeGit()).prepare_repositories(_request(tmp_path, 2, 2))
        ctx = result.contexts[0]
        assert not legacy.exists()
        assert json.loads(ctx.evaluation_file.read_text(encoding="utf-8"))["checkedOutReference"] == "old"

    def test_legacy_logs_migrated(self, tmp_path: Path) -> None:
        old_logs = tmp_path / "repos" / "001" / ".eval" / "logs"
        old_logs.mkdir(parents=True)
        (old_logs / "20240101_000000_Build.log").write_text("x", encoding="utf-8")
        ctx = RepositoryPreparationService(FakeGit()).prepare_repositories(_request(tmp_path, 1, 1)).contexts[0]
        assert (ctx.logs_directory / "20240101_000000_Build.log").is_file()
        assert not (tmp_path / "repos" / "001" / ".eval").exists()

    def test_background(self, tmp_path: Path) -> None:
        done = threading.Event()
        results = []

        def _on_done(result) -> None:
            results.append(result)
            done.set()

        thread = RepositoryPreparationService(FakeGit()).prepare_in_background(
            _request(tmp_path, 1, 2), None, _on_done,
        )
        assert thread.name == "repository-preparation"
        assert thread.daemon
        assert done.wait(10)
        assert len(results[0].contexts) == 2


@requires_git
class TestPrepareWithRealGit:
    def test_tag_after_deadline(self, tmp_path: Path, make_student_repo) -> None:
        for name in ("student-001", "student-003"):
            repo = make_student_repo(name)
            repo.tag("submission", "late")
        template = str(tmp_path / "remote" / "student-{{number}}")
        request = _request(tmp_path, 1, 3, template=template, tag="submission", deadline=date(2024, 1, 10))

        result = RepositoryPreparationService(GitService(timeout=60)).prepare_repositories(request)

        assert [c.placeholder_value for c in result.contexts] == [1, 3]
        assert result.errors.startswith("[002] ")
        for ctx in result.contexts:
            assert ctx.checkout_info.strategy.encode() == "DEADLINE:2024-01-10"

    def test_reprepare_is_idempotent(self, tmp_path: Path, make_student_repo) -> None:
        repo = make_student_repo("student-001")
        repo.tag("submission", "early")
        template = str(tmp_path / "remote" / "student-{{number}}")
        svc = RepositoryPreparationService(GitService(timeout=60))
        first = svc.prepare_repositories(_request(tmp_path, 1, 1, template=template, tag="submission"))
        second = svc.prepare_repositories(_request(tmp_path, 1, 1, template=template, tag="submission"))
        assert first.contexts[0].checkout_info == second.contexts[0].checkout_info
        assert second.contexts[0].checkout_info.reference == repo.commits["early"]
