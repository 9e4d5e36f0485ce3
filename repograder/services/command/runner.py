"""命令批次执行器

在指定工作目录中按顺序执行一组 shell 命令：
- 每条命令启动独立的 shell 子进程（POSIX: /bin/sh -c，Windows: cmd.exe /c）
- stdout / stderr 各由一个随进程创建的读取线程逐行转发给监听器；
  进程退出后读取仍未结束（后台子进程持有管道）时结束整个进程组
- 任一命令非零退出或启动失败即停止后续命令
- 返回的 CommandExecution 可随时 cancel()：不再启动新命令，
  并终止当前子进程所在进程组（SIGTERM，超时后 SIGKILL）
- 无论成功、失败还是取消，on_all_commands_finished 恰好触发一次
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Union

from repograder.core.models import CommandOutcome
from repograder.core.protocols import CommandOutputListener
from repograder.utils.shell import kill_process_group, spawn_shell, terminate_process_tree

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT = 2.0
CANCEL_GRACE = 0.5


# =========================================================================
# 事件类型（封闭集合）
# =========================================================================


@dataclass(frozen=True)
class CommandStarted:
    command: str


@dataclass(frozen=True)
class CommandStdout:
    line: str


@dataclass(frozen=True)
class CommandStderr:
    line: str


@dataclass(frozen=True)
class CommandFinished:
    command: str
    exit_code: int


@dataclass(frozen=True)
class CommandFailed:
    command: str
    error: BaseException


@dataclass(frozen=True)
class AllCommandsFinished:
    cancelled: bool


CommandEvent = Union[
    CommandStarted, CommandStdout, CommandStderr,
    CommandFinished, CommandFailed, AllCommandsFinished,
]


class EventListenerAdapter:
    """把单个事件回调函数适配为 CommandOutputListener"""

    def __init__(self, callback: Callable[[CommandEvent], None]) -> None:
        self._callback = callback

    def on_command_started(self, command: str) -> None:
        self._callback(CommandStarted(command))

    def on_stdout(self, line: str) -> None:
        self._callback(CommandStdout(line))

    def on_stderr(self, line: str) -> None:
        self._callback(CommandStderr(line))

    def on_command_finished(self, command: str, exit_code: int) -> None:
        self._callback(CommandFinished(command, exit_code))

    def on_failure(self, command: str, error: BaseException) -> None:
        self._callback(CommandFailed(command, error))

    def on_all_commands_finished(self, cancelled: bool) -> None:
        self._callback(AllCommandsFinished(cancelled))


# =========================================================================
# 执行句柄
# =========================================================================


class CommandExecution:
    """一次命令批次的可取消句柄

    内部持有：取消标志、当前子进程（加锁保护）、批次 Future。
    """

    def __init__(self, listener: CommandOutputListener, cancel_grace: float = CANCEL_GRACE) -> None:
        self._listener = listener
        self._cancel_grace = cancel_grace
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._future: Future[None] | None = None
        self._finished = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """等待批次结束（on_all_commands_finished 已触发），返回是否结束"""
        return self._done.wait(timeout)

    def cancel(self) -> None:
        """请求取消：跳过未开始的命令，终止正在运行的子进程"""
        self._cancelled.set()
        with self._lock:
            process, self._process = self._process, None
        if process is not None:
            logger.info("取消命令批次，终止进程 pid=%s", process.pid)
            terminate_process_tree(process, self._cancel_grace)
        if self._future is not None and self._future.cancel():
            # 批次尚未开始执行，由此处补发结束事件
            self._finish()

    # ---- 执行器内部使用 ----

    def _bind(self, future: Future[None]) -> None:
        self._future = future

    def _attach(self, process: subprocess.Popen[str]) -> bool:
        """登记当前进程；已取消时返回 False"""
        with self._lock:
            if self._cancelled.is_set():
                return False
            self._process = process
            return True

    def _detach(self) -> None:
        with self._lock:
            self._process = None

    def _finish(self) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
        try:
            self._listener.on_all_commands_finished(self._cancelled.is_set())
        finally:
            self._done.set()


# =========================================================================
# 执行器
# =========================================================================


class CommandRunner:
    """命令批次执行器，持有批次线程池

    max_batches 为可并发运行的批次数。每条命令的 stdout / stderr 各由一个
    随进程创建的读取线程转发，不占用共享线程池。
    """

    def __init__(
        self,
        *,
        max_batches: int = 8,
        drain_timeout: float = DRAIN_TIMEOUT,
        cancel_grace: float = CANCEL_GRACE,
    ) -> None:
        self.max_batches = max(1, max_batches)
        self.drain_timeout = drain_timeout
        self.cancel_grace = cancel_grace
        self._jobs = ThreadPoolExecutor(max_workers=self.max_batches, thread_name_prefix="command-runner")

    def __enter__(self) -> CommandRunner:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._jobs.shutdown(wait=False, cancel_futures=True)

    def run_commands(
        self,
        commands: list[str],
        working_directory: str | Path,
        listener: CommandOutputListener,
    ) -> CommandExecution:
        """提交一个命令批次，立即返回可取消句柄"""
        if commands is None:
            raise TypeError("commands 不能为 None")
        if working_directory is None:
            raise TypeError("working_directory 不能为 None")
        if listener is None:
            raise TypeError("listener 不能为 None")

        execution = CommandExecution(listener, self.cancel_grace)
        cwd = Path(working_directory)
        batch = list(commands)
        execution._bind(self._jobs.submit(self._run_batch, batch, cwd, listener, execution))
        return execution

    def _run_batch(
        self,
        commands: list[str],
        cwd: Path,
        listener: CommandOutputListener,
        execution: CommandExecution,
    ) -> None:
        try:
            for command in commands:
                if execution.cancelled:
                    break
                if not self._run_one(command, cwd, listener, execution):
                    break
        finally:
            execution._finish()

    def _run_one(
        self,
        command: str,
        cwd: Path,
        listener: CommandOutputListener,
        execution: CommandExecution,
    ) -> bool:
        """执行单条命令，返回是否继续后续命令"""
        process: subprocess.Popen[str] | None = None
        try:
            listener.on_command_started(command)
            logger.info("执行: %s (cwd=%s)", command, cwd)
            process = spawn_shell(command, cwd)
            if not execution._attach(process):
                terminate_process_tree(process, self.cancel_grace)
            drains = [
                _start_drain(process.stdout, listener.on_stdout),
                _start_drain(process.stderr, listener.on_stderr),
            ]
            exit_code = process.wait()
            if not _join_all(drains, self.drain_timeout):
                # 后台子进程仍持有输出管道：结束整个进程组以释放管道
                logger.warning("输出读取未在 %.1fs 内结束，结束残留进程组: %s", self.drain_timeout, command)
                kill_process_group(process)
                _join_all(drains, self.drain_timeout)
            listener.on_command_finished(command, exit_code)
            logger.info("命令结束 (exit %d): %s", exit_code, command)
            return exit_code == 0
        except Exception as e:  # noqa: BLE001
            logger.warning("命令执行出错 %s: %s", command, e)
            listener.on_failure(command, e)
            return False
        finally:
            execution._detach()
            if process is not None and process.poll() is None:
                terminate_process_tree(process, self.cancel_grace)


def _start_drain(stream: IO[str] | None, consumer: Callable[[str], None]) -> threading.Thread:
    thread = threading.Thread(target=_forward, args=(stream, consumer), name="command-output", daemon=True)
    thread.start()
    return thread


def _join_all(threads: list[threading.Thread], timeout: float) -> bool:
    """在共同的 timeout 内等待所有读取线程，返回是否全部结束"""
    deadline = time.monotonic() + timeout
    for thread in threads:
        thread.join(max(0.0, deadline - time.monotonic()))
    return not any(thread.is_alive() for thread in threads)


def _forward(stream: IO[str] | None, consumer: Callable[[str], None]) -> None:
    """逐行读取输出并转发，进程结束后流关闭即返回"""
    if stream is None:
        return
    try:
        with stream:
            for line in stream:
                consumer(line.rstrip("\r\n"))
    except (OSError, ValueError) as e:
        # 取消时流可能被提前关闭
        logger.debug("输出流读取结束: %s", e)


# =========================================================================
# 结果收集
# =========================================================================


class CommandBatchRecorder:
    """收集一个批次的输出记录并判定结果

    可选 forward 监听器用于实时转发（如 CLI 打印）。
    """

    def __init__(self, forward: CommandOutputListener | None = None) -> None:
        self._forward = forward
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._finished = threading.Event()
        self.last_exit_code = 0
        self.failed = False
        self.cancelled = False
        self.finished_commands: list[tuple[str, int]] = []

    def _append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def on_command_started(self, command: str) -> None:
        self._append(f"$ {command}")
        if self._forward:
            self._forward.on_command_started(command)

    def on_stdout(self, line: str) -> None:
        self._append(f"[OUT] {line}")
        if self._forward:
            self._forward.on_stdout(line)

    def on_stderr(self, line: str) -> None:
        self._append(f"[ERR] {line}")
        if self._forward:
            self._forward.on_stderr(line)

    def on_command_finished(self, command: str, exit_code: int) -> None:
        self._append(f"命令结束 (exit {exit_code})")
        with self._lock:
            self.finished_commands.append((command, exit_code))
            self.last_exit_code = exit_code
            if exit_code != 0:
                self.failed = True
        if self._forward:
            self._forward.on_command_finished(command, exit_code)

    def on_failure(self, command: str, error: BaseException) -> None:
        self._append(f"命令 '{command}' 执行出错: {error}")
        with self._lock:
            self.failed = True
            self.last_exit_code = -1
        if self._forward:
            self._forward.on_failure(command, error)

    def on_all_commands_finished(self, cancelled: bool) -> None:
        self.cancelled = cancelled
        try:
            if self._forward:
                self._forward.on_all_commands_finished(cancelled)
        finally:
            self._finished.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._finished.wait(timeout)

    def outcome(self) -> CommandOutcome:
        return CommandOutcome.classify(cancelled=self.cancelled, failed=self.failed)

    def transcript(self) -> str:
        with self._lock:
            return "".join(f"{line}\n" for line in self._lines)
