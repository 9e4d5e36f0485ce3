"""领域协议定义

集中定义各层之间的接口契约（Protocol），上层依赖抽象而非具体实现。
使用 typing.Protocol 而非 ABC，测试替身无需继承即可满足协议。
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Protocol


# =========================================================================
# Git 能力协议
# =========================================================================

class GitProvider(Protocol):
    """Git 能力协议 — 仅暴露检出流程需要的窄接口

    clone / fetch / 按 commit 检出 / 引用解析 / 历史遍历，
    对象级操作全部委托给底层 git 实现。失败时抛 GitServiceError。
    """

    def clone_or_update(self, repository_url: str, target: Path) -> Path:
        """目标不存在则 clone，已是检出目录则 fetch + reset + pull 默认分支"""
        ...

    def checkout_tag(self, repository: Path, tag: str) -> str:
        """检出标签指向的 commit，返回 commit SHA"""
        ...

    def resolve_tag_commit_time(self, repository: Path, tag: str) -> datetime:
        """返回标签所指 commit 的提交时间（带时区）"""
        ...

    def checkout_latest_before(self, repository: Path, deadline: date) -> str:
        """检出默认分支上截止日当天结束前的最新 commit，返回 SHA"""
        ...

    def resolve_current_commit(self, repository: Path) -> str | None:
        """返回当前 HEAD 的 commit SHA"""
        ...


# =========================================================================
# 命令输出监听协议
# =========================================================================

class CommandOutputListener(Protocol):
    """命令批次事件监听器

    回调在执行器的工作线程上触发，实现方需自行保证线程安全。
    """

    def on_command_started(self, command: str) -> None: ...

    def on_stdout(self, line: str) -> None: ...

    def on_stderr(self, line: str) -> None: ...

    def on_command_finished(self, command: str, exit_code: int) -> None: ...

    def on_failure(self, command: str, error: BaseException) -> None: ...

    def on_all_commands_finished(self, cancelled: bool) -> None: ...


class PreparationProgressListener(Protocol):
    """批量准备进度回调：(已完成数, 总数)"""

    def __call__(self, completed: int, total: int) -> None: ...
