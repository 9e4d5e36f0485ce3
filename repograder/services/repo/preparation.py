"""批量仓库准备 — 占位符范围 → 一组已检出的仓库上下文

每个编号按升序依次处理（不并发）：
  1. 模板替换出仓库地址
  2. clone 或更新
  3. 检出策略解析（tag / 截止日 / HEAD）
  4. 评测目录 + 旧版评测文件迁移
  5. 首次准备时写入初始评测状态
  6. 旧版日志迁移
  7. 确保 logs/ 存在
单个编号失败只记录错误行并继续，不中断整批。
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Callable

from repograder.core.exceptions import GitServiceError
from repograder.core.models import (
    DEFAULT_PLACEHOLDER,
    RepositoryContext,
    RepositoryPreparationRequest,
    RepositoryPreparationResult,
    format_placeholder,
)
from repograder.core.protocols import GitProvider, PreparationProgressListener
from repograder.services.repo.checkout import CheckoutStrategyResolver
from repograder.services.repo.migration import migrate_legacy_evaluation_file, migrate_legacy_logs
from repograder.services.state import EvaluationSaveData, EvaluationStateStore

logger = logging.getLogger(__name__)

LOGS_DIR_NAME = "logs"


def build_repository_url(template: str, placeholder: str | None, value: int) -> str:
    """替换占位符；配置的占位符不在模板中时回退到 {{number}}，都不在则原样返回"""
    token = (placeholder or "").strip() or DEFAULT_PLACEHOLDER
    formatted = format_placeholder(value)
    if token in template:
        return template.replace(token, formatted)
    if DEFAULT_PLACEHOLDER in template:
        return template.replace(DEFAULT_PLACEHOLDER, formatted)
    return template


def format_error_line(placeholder_value: int, error: BaseException) -> str:
    """单行错误记录："[007] message (cause)" """
    line = f"[{format_placeholder(placeholder_value)}] {error}"
    cause = getattr(error, "cause", None) or error.__cause__
    cause_text = str(cause).strip() if cause else ""
    if cause_text and cause_text != str(error):
        line += f" ({cause_text})"
    return re.sub(r"\s*\n\s*", " ", line)


class RepositoryPreparationService:
    """批量仓库准备服务"""

    def __init__(
        self,
        git: GitProvider,
        state_store: EvaluationStateStore | None = None,
        resolver: CheckoutStrategyResolver | None = None,
    ) -> None:
        self._git = git
        self._state_store = state_store or EvaluationStateStore()
        self._resolver = resolver or CheckoutStrategyResolver(git)

    def prepare_repositories(
        self,
        request: RepositoryPreparationRequest,
        listener: PreparationProgressListener | None = None,
    ) -> RepositoryPreparationResult:
        """按编号升序准备整批仓库，返回成功的上下文与错误记录"""
        values = request.placeholder_range.values()
        total = len(values)
        contexts: list[RepositoryContext] = []
        errors: list[str] = []
        legacy_root = request.evaluations_root.parent
        if legacy_root == request.evaluations_root:
            legacy_root = None

        logger.info("开始准备 %d 个仓库 (%s)", total, request.repository_template)
        for completed, value in enumerate(values, start=1):
            try:
                contexts.append(self.prepare_single(request, value, legacy_root))
            except (GitServiceError, OSError) as e:
                line = format_error_line(value, e)
                logger.warning("仓库准备失败 %s", line, extra={"repository": format_placeholder(value)})
                errors.append(line)
            finally:
                if listener is not None:
                    listener(completed, total)

        logger.info("仓库准备完成: 成功 %d, 失败 %d", len(contexts), len(errors))
        return RepositoryPreparationResult(
            contexts=tuple(contexts),
            errors="".join(f"{line}\n" for line in errors),
        )

    def prepare_single(
        self,
        request: RepositoryPreparationRequest,
        value: int,
        legacy_evaluations_root: Path | None = None,
    ) -> RepositoryContext:
        """准备单个编号；失败抛 GitServiceError / OSError"""
        label = format_placeholder(value)
        repository_url = build_repository_url(
            request.repository_template, request.repository_number_placeholder, value,
        )
        repository_path = request.repositories_root / label
        repository_path.parent.mkdir(parents=True, exist_ok=True)
        self._git.clone_or_update(repository_url, repository_path)

        checkout_info = self._resolver.resolve(repository_path, request.tag, request.deadline)

        evaluation_directory = request.evaluations_root / label
        evaluation_directory.mkdir(parents=True, exist_ok=True)
        evaluation_file = evaluation_directory / request.evaluation_file_name
        migrate_legacy_evaluation_file(
            evaluation_file, value, request.evaluations_root, legacy_evaluations_root,
        )

        if not evaluation_file.exists():
            self._state_store.write_immediately(evaluation_file, EvaluationSaveData(
                repository_url=repository_url,
                checked_out_reference=checkout_info.reference,
                placeholder_value=value,
                evaluation_title=request.evaluation_title,
                checkout_strategy=checkout_info.strategy.encode(),
            ))

        migrate_legacy_logs(repository_path, evaluation_directory)
        logs_directory = evaluation_directory / LOGS_DIR_NAME
        logs_directory.mkdir(parents=True, exist_ok=True)

        logger.info(
            "[%s] 就绪: %s @ %s (%s)", label, repository_url,
            (checkout_info.reference or "-")[:12], checkout_info.strategy.encode() or "-",
            extra={"repository": label},
        )
        return RepositoryContext(
            placeholder_value=value,
            repository_url=repository_url,
            repository_path=repository_path,
            evaluation_directory=evaluation_directory,
            evaluation_file=evaluation_file,
            logs_directory=logs_directory,
            checkout_info=checkout_info,
        )

    def prepare_in_background(
        self,
        request: RepositoryPreparationRequest,
        listener: PreparationProgressListener | None,
        on_done: Callable[[RepositoryPreparationResult], None],
    ) -> threading.Thread:
        """在独立守护线程中执行整批准备，完成后回调 on_done"""

        def _job() -> None:
            on_done(self.prepare_repositories(request, listener))

        thread = threading.Thread(target=_job, name="repository-preparation", daemon=True)
        thread.start()
        return thread
