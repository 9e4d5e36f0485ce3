"""子进程工具

两类用法：
- 一次性调用并捕获输出（git 查询 / 检出），经 CommandExecutor 注入，测试可替换
- 评测命令的长时间运行：spawn_shell() 在独立进程组中启动宿主 shell，
  terminate_process_tree() 连同其派生的子进程一起结束
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

logger = logging.getLogger(__name__)


def is_windows() -> bool:
    return os.name == "nt"


def shell_argv(command: str) -> list[str]:
    """POSIX: /bin/sh -c <command>；Windows: cmd.exe /c <command>"""
    if is_windows():
        return ["cmd.exe", "/c", command]
    return ["/bin/sh", "-c", command]


# =========================================================================
# 一次性调用
# =========================================================================


@dataclass(frozen=True)
class CompletedCommand:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | Path,
        extra_env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CompletedCommand:
        """运行到结束并捕获输出；超时抛 subprocess.TimeoutExpired"""
        ...


class CaptureExecutor:
    """subprocess.run 实现；extra_env 叠加在当前环境变量之上"""

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str | Path,
        extra_env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CompletedCommand:
        env = {**os.environ, **extra_env} if extra_env else None
        logger.debug("$ %s (cwd=%s)", " ".join(argv), cwd)
        proc = subprocess.run(
            argv, cwd=str(cwd), env=env, timeout=timeout,
            stdin=subprocess.DEVNULL, capture_output=True,
            text=True, encoding="utf-8", errors="replace", check=False,
        )
        return CompletedCommand(tuple(argv), proc.returncode, proc.stdout, proc.stderr)


# =========================================================================
# 长时间运行的 shell 命令
# =========================================================================


def spawn_shell(command: str, cwd: str | Path) -> subprocess.Popen[str]:
    """在新进程组中启动 shell 命令，stdout / stderr 为按行缓冲的文本管道

    异常:
        OSError: shell 无法启动或工作目录不存在
    """
    if is_windows():
        group = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}  # type: ignore[attr-defined]
    else:
        group = {"start_new_session": True}
    return subprocess.Popen(
        shell_argv(command),
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
        **group,
    )


def terminate_process_tree(process: subprocess.Popen[str], grace: float) -> None:
    """SIGTERM 整个进程组，grace 秒后仍存活则 SIGKILL"""
    if process.poll() is not None:
        return
    _signal_group(process, force=False)
    try:
        process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.warning("进程 pid=%s 未在 %.1fs 内退出，强制终止", process.pid, grace)
        _signal_group(process, force=True)
        process.wait()


def kill_process_group(process: subprocess.Popen[str]) -> None:
    """SIGKILL 进程组中的残留进程（shell 本身可能已退出）

    Windows 下 shell 退出后无法定位其派生的进程，只能结束 shell 本身。
    """
    _signal_group(process, force=True)


def _signal_group(process: subprocess.Popen[str], *, force: bool) -> None:
    try:
        if is_windows():
            if force:
                process.kill()
            else:
                process.terminate()
        else:
            # start_new_session 使进程组 ID 等于 shell 的 PID
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        logger.debug("进程组 pid=%s 已不存在", process.pid)
