"""检出策略解析

按优先级决定每个仓库检出哪个引用，且只执行一次检出：
  1. 配置了 tag：若同时有截止日且标签提交晚于截止日（或标签时间无法解析），改走截止日；
     否则直接检出标签，失败时回退到截止日或 HEAD
  2. 配置了截止日：默认分支上截止日当天结束前的最新提交
  3. 都没有：当前 HEAD
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

from repograder.core.exceptions import GitServiceError
from repograder.core.models import CheckoutInfo, CheckoutMode, CheckoutStrategy
from repograder.core.protocols import GitProvider
from repograder.services.repo.git import deadline_cutoff

logger = logging.getLogger(__name__)


class CheckoutStrategyResolver:
    """检出策略解析器"""

    def __init__(self, git: GitProvider) -> None:
        self._git = git

    def resolve(self, repository: Path, tag: str | None = None, deadline: date | None = None) -> CheckoutInfo:
        """检出并返回实际使用的引用与策略；截止日/HEAD 失败时抛 GitServiceError"""
        if tag:
            if deadline is not None:
                try:
                    tag_time = self._git.resolve_tag_commit_time(repository, tag)
                except GitServiceError as e:
                    logger.warning("标签 %s 时间无法解析，改用截止日: %s", tag, e)
                    return self._by_deadline(repository, deadline)
                if tag_time > deadline_cutoff(deadline):
                    logger.info(
                        "标签 %s 提交于 %s，晚于截止日 %s，改用截止日",
                        tag, tag_time.isoformat(), deadline.isoformat(),
                    )
                    return self._by_deadline(repository, deadline)
            try:
                ref = self._git.checkout_tag(repository, tag)
                return CheckoutInfo(ref, CheckoutStrategy.of(CheckoutMode.TAG, tag))
            except GitServiceError as e:
                logger.warning("标签 %s 检出失败，回退: %s", tag, e)
                return self._by_deadline_or_head(repository, deadline)
        return self._by_deadline_or_head(repository, deadline)

    def _by_deadline_or_head(self, repository: Path, deadline: date | None) -> CheckoutInfo:
        if deadline is not None:
            return self._by_deadline(repository, deadline)
        return self._head(repository)

    def _by_deadline(self, repository: Path, deadline: date) -> CheckoutInfo:
        ref = self._git.checkout_latest_before(repository, deadline)
        return CheckoutInfo(ref, CheckoutStrategy.of(CheckoutMode.DEADLINE, deadline.isoformat()))

    def _head(self, repository: Path) -> CheckoutInfo:
        ref = self._git.resolve_current_commit(repository)
        return CheckoutInfo(ref, CheckoutStrategy.of(CheckoutMode.HEAD))
