"""代码仓服务

拆分说明：
- git.py: git 命令行适配（clone/update、标签、截止日、HEAD）
- checkout.py: 检出策略解析
- migration.py: 旧版目录布局迁移
- preparation.py: 按占位符范围批量准备仓库
"""

from repograder.services.repo.checkout import CheckoutStrategyResolver
from repograder.services.repo.git import GitService
from repograder.services.repo.preparation import RepositoryPreparationService, build_repository_url

__all__ = [
    "GitService",
    "CheckoutStrategyResolver",
    "RepositoryPreparationService",
    "build_repository_url",
]
