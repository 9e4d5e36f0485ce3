"""共享测试夹具：用真实 git 在 tmp_path 中构造学生仓库"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="需要 git")
posix_only = pytest.mark.skipif(os.name == "nt", reason="依赖 /bin/sh")


def git(cwd: Path, *args: str, when: str | None = None) -> str:
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "student",
        "GIT_AUTHOR_EMAIL": "student@example.com",
        "GIT_COMMITTER_NAME": "student",
        "GIT_COMMITTER_EMAIL": "student@example.com",
    }
    if when:
        env["GIT_AUTHOR_DATE"] = when
        env["GIT_COMMITTER_DATE"] = when
    r = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", "-c", "tag.gpgsign=false", *args],
        cwd=str(cwd), env=env, check=True, capture_output=True, text=True,
    )
    return r.stdout.strip()


@dataclass
class StudentRepo:
    path: Path
    commits: dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(self, label: str, when: str, content: str | None = None) -> str:
        (self.path / "work.txt").write_text(content or label, encoding="utf-8")
        git(self.path, "add", "work.txt")
        git(self.path, "commit", "-q", "-m", label, when=when)
        sha = git(self.path, "rev-parse", "HEAD")
        self.commits[label] = sha
        return sha

    def tag(self, name: str, label: str) -> None:
        git(self.path, "tag", name, self.commits[label])


@pytest.fixture()
def make_student_repo(tmp_path: Path):
    """工厂：在 tmp_path/remote/<name> 创建默认分支为 main 的仓库

    每个仓库包含两个提交：early (2024-01-05) 与 late (2024-01-20)。
    """

    def _make(name: str) -> StudentRepo:
        path = tmp_path / "remote" / name
        path.mkdir(parents=True)
        git(path, "init", "-q")
        git(path, "symbolic-ref", "HEAD", "refs/heads/main")
        repo = StudentRepo(path)
        repo.commit("early", "2024-01-05T12:00:00+00:00")
        repo.commit("late", "2024-01-20T12:00:00+00:00")
        return repo

    return _make
