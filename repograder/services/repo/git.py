"""Git 能力适配 — 通过 git 命令行实现检出流程所需的窄接口

职责：
- clone 或更新（fetch + reset + pull 默认分支）
- 标签 / 截止日 / HEAD 三种引用解析与检出
- 检出固定 commit 时统一重建工作分支 evaluation-snapshot，保证可重复执行
"""

from __future__ import annotations

import logging
import re
import subprocess
from datetime import date, datetime, time, timezone
from pathlib import Path

from repograder.core.exceptions import GitServiceError, ValidationError
from repograder.utils.shell import CaptureExecutor, CommandExecutor, CompletedCommand

logger = logging.getLogger(__name__)

WORK_BRANCH = "evaluation-snapshot"
REMOTE = "origin"

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def deadline_cutoff(deadline: date) -> datetime:
    """截止日当天结束时刻（本地时区）"""
    return datetime.combine(deadline, time.max).astimezone()


class GitService:
    """基于 git 命令行的 GitProvider 实现"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int | None = 900) -> None:
        self._executor = executor or CaptureExecutor()
        self.timeout = timeout

    # ---- 底层调用 ----

    def _run(self, args: list[str], *, cwd: Path, network: bool = False) -> CompletedCommand:
        # 禁止交互式凭据提示，不可达或需认证的地址直接失败
        extra_env = {"GIT_TERMINAL_PROMPT": "0"} if network else None
        try:
            return self._executor.execute(
                ["git", *args], cwd=cwd, extra_env=extra_env, timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise GitServiceError(f"git {args[0]} 无法执行", e) from e

    def _git(self, args: list[str], *, cwd: Path, network: bool = False) -> str:
        """执行 git 子命令，失败抛 GitServiceError，返回 stdout"""
        r = self._run(args, cwd=cwd, network=network)
        if not r.ok:
            raise GitServiceError(
                f"git {args[0]} 失败 (rc={r.returncode})", _first_line(r.stderr),
            )
        return r.stdout

    def _git_optional(self, args: list[str], *, cwd: Path) -> str | None:
        """执行查询类 git 子命令，非零退出返回 None"""
        r = self._run(args, cwd=cwd)
        if not r.ok:
            return None
        return r.stdout.strip() or None

    def _resolve_commit(self, repository: Path, ref: str) -> str | None:
        return self._git_optional(
            ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=repository,
        )

    # ---- clone / update ----

    def clone_or_update(self, repository_url: str, target: Path) -> Path:
        """目标不存在则 clone，已是检出目录则同步默认分支"""
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            if (target / ".git").exists():
                logger.info("更新仓库: %s", target)
                self._update(target)
            else:
                logger.info("克隆仓库: %s -> %s", repository_url, target)
                self._git(["clone", repository_url, str(target)], cwd=target.parent, network=True)
        except GitServiceError as e:
            raise GitServiceError("仓库无法克隆或更新", _describe(e)) from e
        return target

    def _update(self, repository: Path) -> None:
        self._git(["fetch", "--tags", "--prune", "--force", REMOTE], cwd=repository, network=True)
        branch = self.resolve_default_branch(repository)
        if branch is None:
            logger.warning("无法确定默认分支，跳过同步: %s", repository)
            return
        remote_ref = f"{REMOTE}/{branch}"
        self._git(["checkout", "--force", "-B", branch, "--track", remote_ref], cwd=repository)
        self._git(["reset", "--hard", remote_ref], cwd=repository)
        self._git(["pull", "--ff-only", REMOTE, branch], cwd=repository, network=True)

    def resolve_default_branch(self, repository: Path) -> str | None:
        """远端 HEAD 指向的分支，其次 main / master"""
        prefix = f"refs/remotes/{REMOTE}/"
        target = self._git_optional(
            ["symbolic-ref", "--quiet", f"{prefix}HEAD"], cwd=repository,
        )
        if target and target.startswith(prefix):
            return target[len(prefix):]
        for candidate in ("main", "master"):
            if self._resolve_commit(repository, f"{prefix}{candidate}"):
                return candidate
        return None

    def _resolve_default_head(self, repository: Path) -> str | None:
        for ref in (f"refs/remotes/{REMOTE}/HEAD", "refs/heads/main", "refs/heads/master", "HEAD"):
            sha = self._resolve_commit(repository, ref)
            if sha:
                return sha
        return None

    # ---- 标签 ----

    def _resolve_tag(self, repository: Path, tag: str) -> str:
        if not tag or not tag.strip():
            raise ValidationError("tag 不能为空")
        if not _SAFE_REF_RE.match(tag) or tag.startswith("-"):
            raise GitServiceError(f"标签名包含非法字符: {tag}")
        sha = self._resolve_commit(repository, tag) or self._resolve_commit(repository, f"refs/tags/{tag}")
        if sha is None:
            raise GitServiceError(f"未找到标签 '{tag}'")
        return sha

    def checkout_tag(self, repository: Path, tag: str) -> str:
        """检出标签指向的 commit，返回 SHA"""
        sha = self._resolve_tag(repository, tag)
        try:
            self._checkout_commit(repository, sha)
        except GitServiceError as e:
            raise GitServiceError("标签无法检出", _describe(e)) from e
        logger.info("已检出标签 %s -> %s", tag, sha[:12])
        return sha

    def resolve_tag_commit_time(self, repository: Path, tag: str) -> datetime:
        sha = self._resolve_tag(repository, tag)
        return self._commit_time(repository, sha)

    def _commit_time(self, repository: Path, sha: str) -> datetime:
        out = self._git(["show", "-s", "--format=%ct", sha], cwd=repository).strip()
        try:
            return datetime.fromtimestamp(int(out), tz=timezone.utc)
        except ValueError as e:
            raise GitServiceError("提交时间无法解析", out) from e

    # ---- 截止日 ----

    def checkout_latest_before(self, repository: Path, deadline: date) -> str:
        """沿默认分支历史倒序查找，检出第一个不晚于截止日结束时刻的 commit"""
        start = self._resolve_default_head(repository)
        if start is None:
            raise GitServiceError("无法确定默认分支")
        cutoff = deadline_cutoff(deadline).timestamp()
        target: str | None = None
        out = self._git(["log", "--format=%H %ct", start], cwd=repository)
        for line in out.splitlines():
            sha, _, ts = line.strip().partition(" ")
            if sha and ts and int(ts) <= cutoff:
                target = sha
                break
        if target is None:
            raise GitServiceError(f"截止日 {deadline.isoformat()} 当天或之前没有提交")
        try:
            self._checkout_commit(repository, target)
        except GitServiceError as e:
            raise GitServiceError("截止日提交检出失败", _describe(e)) from e
        logger.info("已检出截止日 %s 前最新提交 %s", deadline.isoformat(), target[:12])
        return target

    # ---- HEAD ----

    def resolve_current_commit(self, repository: Path) -> str | None:
        if not (repository / ".git").exists():
            raise GitServiceError(f"不是 Git 检出目录: {repository}")
        return self._resolve_commit(repository, "HEAD")

    # ---- 检出固定 commit ----

    def _checkout_commit(self, repository: Path, sha: str) -> None:
        """删除旧工作分支（不存在则忽略），在目标 commit 上重建并强制同步工作区"""
        self._git_optional(["branch", "-D", WORK_BRANCH], cwd=repository)
        self._git(
            ["checkout", "--force", "--no-track", "-B", WORK_BRANCH, sha], cwd=repository,
        )
        self._git(["reset", "--hard", sha], cwd=repository)


def _describe(error: GitServiceError) -> str:
    if error.cause:
        return f"{error}: {error.cause}"
    return str(error)
