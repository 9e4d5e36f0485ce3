"""服务容器 — 统一装配 git / 仓库准备 / 命令执行 / 工作流

同一容器内的实例共享（如命令执行线程池、当前仓库上下文）。
CLI 通过 get_container() 获取服务，而非直接构造。

依赖关系（→ 表示依赖）:
  preparation → git, state_store
  workflow    → evaluation, preparation, command_runner, command_log, state_store

用法:
    container = ServiceContainer(config=Config.from_file("repograder.yml"))
    result = container.workflow.prepare(1, 30)
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from repograder.core.config import Config
    from repograder.core.evaluation import EvaluationConfig
    from repograder.services.command.log import CommandLogService
    from repograder.services.command.runner import CommandRunner
    from repograder.services.repo.git import GitService
    from repograder.services.repo.preparation import RepositoryPreparationService
    from repograder.services.state import EvaluationStateStore
    from repograder.services.workflow import EvaluationWorkflow

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from repograder.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def evaluation(self) -> EvaluationConfig:
        if "evaluation" not in self._instances:
            from repograder.core.evaluation import EvaluationConfig
            self._instances["evaluation"] = EvaluationConfig.from_file(
                Path(self._config.evaluation_config),
            )
        return self._instances["evaluation"]  # type: ignore[return-value]

    @property
    def git(self) -> GitService:
        if "git" not in self._instances:
            from repograder.services.repo.git import GitService
            self._instances["git"] = GitService()
        return self._instances["git"]  # type: ignore[return-value]

    @property
    def state_store(self) -> EvaluationStateStore:
        if "state_store" not in self._instances:
            from repograder.services.state import EvaluationStateStore
            self._instances["state_store"] = EvaluationStateStore()
        return self._instances["state_store"]  # type: ignore[return-value]

    @property
    def preparation(self) -> RepositoryPreparationService:
        if "preparation" not in self._instances:
            from repograder.services.repo.preparation import RepositoryPreparationService
            self._instances["preparation"] = RepositoryPreparationService(
                self.git, state_store=self.state_store,
            )
        return self._instances["preparation"]  # type: ignore[return-value]

    @property
    def command_runner(self) -> CommandRunner:
        if "command_runner" not in self._instances:
            from repograder.services.command.runner import CommandRunner
            self._instances["command_runner"] = CommandRunner(
                max_batches=self._config.max_batches,
                drain_timeout=self._config.drain_timeout,
                cancel_grace=self._config.cancel_grace,
            )
        return self._instances["command_runner"]  # type: ignore[return-value]

    @property
    def command_log(self) -> CommandLogService:
        if "command_log" not in self._instances:
            from repograder.services.command.log import CommandLogService
            self._instances["command_log"] = CommandLogService()
        return self._instances["command_log"]  # type: ignore[return-value]

    @property
    def workflow(self) -> EvaluationWorkflow:
        if "workflow" not in self._instances:
            from repograder.services.workflow import EvaluationWorkflow
            self._instances["workflow"] = EvaluationWorkflow(
                self.evaluation,
                base_dir=self._config.base_path,
                preparation=self.preparation,
                runner=self.command_runner,
                log_service=self.command_log,
                state_store=self.state_store,
            )
        return self._instances["workflow"]  # type: ignore[return-value]

    def close(self) -> None:
        """释放命令执行线程池"""
        runner = self._instances.pop("command_runner", None)
        if runner is not None:
            runner.close()  # type: ignore[attr-defined]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def set_container(container: ServiceContainer) -> None:
    """替换全局容器（CLI 按命令行参数装配后调用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = container


def reset_container() -> None:
    """关闭并重置全局容器（测试中使用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        if _global is not None:
            _global.close()
        _global = None
