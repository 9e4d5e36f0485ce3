"""评测工作流 — 准备仓库 + 在每个仓库中运行评测节点

  prepare()          占位符范围 → 已检出的仓库上下文（整体替换上一批）
  run_node()         在单个仓库中执行节点命令 → 日志文件 + 评测状态文件
  run_node_for_all() 对当前所有仓库依次执行同一节点
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from repograder.core.evaluation import EvaluationConfig, EvaluationTree
from repograder.core.exceptions import ConfigError, ValidationError
from repograder.core.models import (
    CommandOutcome,
    EvaluationStatus,
    PlaceholderRange,
    RepositoryContext,
    RepositoryPreparationRequest,
    RepositoryPreparationResult,
    format_placeholder,
)
from repograder.core.protocols import CommandOutputListener, PreparationProgressListener
from repograder.services.command.log import CommandLogService
from repograder.services.command.runner import CommandBatchRecorder, CommandRunner
from repograder.services.repo.preparation import RepositoryPreparationService
from repograder.services.state import (
    EvaluationSaveData,
    EvaluationStateStore,
    capture_nodes,
    restore_nodes,
)

logger = logging.getLogger(__name__)

REPOS_DIR_NAME = "repos"
EVALUATIONS_DIR_NAME = "evaluations"


@dataclass
class NodeRunResult:
    """单个仓库上一次节点运行的结果"""

    context: RepositoryContext
    node_id: str
    outcome: CommandOutcome
    exit_code: int
    achieved_points: float
    log_file: str | None
    transcript: str

    @property
    def success(self) -> bool:
        return self.outcome == CommandOutcome.SUCCESS


class EvaluationWorkflow:
    """评测工作流，持有当前一批仓库上下文"""

    def __init__(
        self,
        evaluation: EvaluationConfig,
        *,
        base_dir: str | Path,
        preparation: RepositoryPreparationService,
        runner: CommandRunner,
        log_service: CommandLogService | None = None,
        state_store: EvaluationStateStore | None = None,
    ) -> None:
        self.evaluation = evaluation
        self.base_dir = Path(base_dir)
        self._preparation = preparation
        self._runner = runner
        self._log_service = log_service or CommandLogService()
        self._state_store = state_store or EvaluationStateStore()
        self.contexts: tuple[RepositoryContext, ...] = ()

    @property
    def repositories_root(self) -> Path:
        return self.base_dir / REPOS_DIR_NAME

    @property
    def evaluations_root(self) -> Path:
        return self.base_dir / EVALUATIONS_DIR_NAME / self.evaluation.slug

    # ---- 准备 ----

    def build_request(
        self, template: str | None, start: int, end: int,
    ) -> RepositoryPreparationRequest:
        """组装准备请求；模板为空抛 ConfigError，范围非法抛 ValidationError"""
        template = (template or self.evaluation.repository_url_template or "").strip()
        if not template:
            raise ConfigError("仓库 URL 模板为空")
        return (
            RepositoryPreparationRequest.builder()
            .repository_template(template)
            .placeholder_range(PlaceholderRange(start, end))
            .repositories_root(self.repositories_root)
            .evaluations_root(self.evaluations_root)
            .evaluation_file_name(self.evaluation.evaluation_file_name)
            .evaluation_title(self.evaluation.title)
            .repository_number_placeholder(self.evaluation.repository_number_placeholder)
            .tag(self.evaluation.tag)
            .deadline(self.evaluation.deadline)
            .build()
        )

    def prepare(
        self,
        start: int,
        end: int,
        template: str | None = None,
        listener: PreparationProgressListener | None = None,
    ) -> RepositoryPreparationResult:
        request = self.build_request(template, start, end)
        result = self._preparation.prepare_repositories(request, listener)
        self.contexts = result.contexts
        return result

    # ---- 节点运行 ----

    def load_tree(self, context: RepositoryContext) -> EvaluationTree:
        """由评测配置构建节点树，并恢复该仓库已保存的评分状态"""
        tree = EvaluationTree.from_config(self.evaluation)
        saved = self._state_store.load(context.evaluation_file)
        if saved is not None:
            restore_nodes(tree, saved.nodes)
        return tree

    def load_saved(self, placeholder_value: int) -> tuple[EvaluationTree, EvaluationSaveData | None]:
        """按编号读取已保存的评分状态（不访问仓库）"""
        evaluation_file = (
            self.evaluations_root / format_placeholder(placeholder_value)
            / self.evaluation.evaluation_file_name
        )
        tree = EvaluationTree.from_config(self.evaluation)
        saved = self._state_store.load(evaluation_file)
        if saved is not None:
            restore_nodes(tree, saved.nodes)
        return tree, saved

    def run_node(
        self,
        context: RepositoryContext,
        node_id: str,
        listener: CommandOutputListener | None = None,
        timeout: float | None = None,
    ) -> NodeRunResult:
        """在仓库工作目录中执行节点命令并保存结果

        timeout 到期时取消批次，结果记为 CANCELLED。
        """
        tree = self.load_tree(context)
        node = tree.get(node_id)
        if not node.commands:
            raise ValidationError(f"评测节点没有可执行的命令: {node_id}")

        logger.info(
            "[%s] 运行节点 %s (%d 条命令)", context.label, node_id, len(node.commands),
            extra={"repository": context.label},
        )
        tree.set_result(node_id, EvaluationStatus.RUNNING)
        recorder = CommandBatchRecorder(forward=listener)
        execution = self._runner.run_commands(node.commands, context.repository_path, recorder)
        if not execution.wait(timeout):
            logger.warning(
                "[%s] 节点 %s 超时 (%ss)，取消执行", context.label, node_id, timeout,
                extra={"repository": context.label},
            )
            execution.cancel()
            execution.wait()

        outcome = recorder.outcome()
        exit_code = 0 if outcome == CommandOutcome.SUCCESS else recorder.last_exit_code
        transcript = recorder.transcript()
        log_file = self._log_service.write_log(
            context.evaluation_directory, node_id, node.commands, transcript,
        )

        points = tree.max_points(node_id) if outcome == CommandOutcome.SUCCESS else 0.0
        tree.set_result(node_id, EvaluationStatus(outcome.value), points)
        node.last_log_file = log_file
        self._save(context, tree)

        logger.info(
            "[%s] 节点 %s 结束: %s (exit %d, %.1f/%.1f 分)",
            context.label, node_id, outcome.value, exit_code, points, tree.max_points(node_id),
            extra={"repository": context.label},
        )
        return NodeRunResult(
            context=context,
            node_id=node_id,
            outcome=outcome,
            exit_code=exit_code,
            achieved_points=points,
            log_file=log_file,
            transcript=transcript,
        )

    def run_node_for_all(
        self,
        node_id: str,
        listener_factory: Callable[[RepositoryContext], CommandOutputListener | None] | None = None,
        timeout: float | None = None,
    ) -> list[NodeRunResult]:
        """对当前所有仓库依次运行同一节点"""
        results = []
        for context in self.contexts:
            listener = listener_factory(context) if listener_factory else None
            results.append(self.run_node(context, node_id, listener, timeout))
        return results

    def _save(self, context: RepositoryContext, tree: EvaluationTree) -> None:
        data = self._state_store.load(context.evaluation_file) or EvaluationSaveData(
            repository_url=context.repository_url,
            checked_out_reference=context.checkout_info.reference,
            placeholder_value=context.placeholder_value,
            evaluation_title=self.evaluation.title,
            checkout_strategy=context.checkout_info.strategy.encode(),
        )
        data.nodes = capture_nodes(tree)
        self._state_store.write_immediately(context.evaluation_file, data)
