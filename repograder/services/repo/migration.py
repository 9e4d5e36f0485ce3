"""旧版目录布局迁移

- 评测状态文件：<evaluations_root>/<NNN>.json 或更早的 <evaluations_root 的父目录>/<NNN>.json
  迁移到 <evaluations_root>/<NNN>/<file_name>
- 日志目录：仓库工作区内的 .eval/logs 迁移到评测目录的 logs/，清理失败不致命
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from repograder.core.models import format_placeholder

logger = logging.getLogger(__name__)

LEGACY_EVAL_DIR = ".eval"


def move_with_fallback(source: Path, target: Path) -> None:
    """移动文件；跨卷等导致移动失败时改为复制 + 尽力删除源文件

    异常:
        OSError: 复制也失败
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        source.replace(target)
        return
    except OSError as e:
        logger.debug("原子移动失败，改为复制: %s -> %s (%s)", source, target, e)
    shutil.copy2(source, target)
    try:
        source.unlink()
    except OSError as e:
        logger.warning("源文件删除失败（忽略）: %s (%s)", source, e)


def migrate_legacy_evaluation_file(
    evaluation_file: Path,
    placeholder_value: int,
    evaluations_root: Path,
    legacy_evaluations_root: Path | None,
) -> bool:
    """目标不存在时迁移旧版平铺的评测文件，返回是否发生迁移"""
    if evaluation_file.exists():
        return False
    evaluation_file.parent.mkdir(parents=True, exist_ok=True)
    name = f"{format_placeholder(placeholder_value)}.json"
    candidates = [evaluations_root / name]
    if legacy_evaluations_root is not None:
        candidates.append(legacy_evaluations_root / name)
    for legacy in candidates:
        if legacy.is_file():
            move_with_fallback(legacy, evaluation_file)
            logger.info("已迁移旧版评测文件: %s -> %s", legacy, evaluation_file)
            return True
    return False


def migrate_legacy_logs(repository_path: Path, evaluation_directory: Path) -> int:
    """把仓库内 .eval/logs 下的文件移到评测目录 logs/，返回迁移的文件数

    任何错误只记录日志，不向上抛出。
    """
    legacy_logs = repository_path / LEGACY_EVAL_DIR / "logs"
    if not legacy_logs.is_dir():
        return 0
    target_logs = evaluation_directory / "logs"
    moved = failed = 0
    try:
        target_logs.mkdir(parents=True, exist_ok=True)
        for file in sorted(p for p in legacy_logs.rglob("*") if p.is_file()):
            try:
                move_with_fallback(file, target_logs / file.name)
                moved += 1
            except OSError as e:
                failed += 1
                logger.warning("日志迁移失败: %s (%s)", file, e)
    except OSError as e:
        logger.warning("仓库 %s 的日志迁移失败: %s", repository_path, e)
        return moved
    if failed:
        # 保留未迁移的文件，下次准备时重试
        return moved

    shutil.rmtree(legacy_logs, ignore_errors=True)
    eval_root = legacy_logs.parent
    try:
        if not any(eval_root.iterdir()):
            eval_root.rmdir()
    except OSError:
        # 清理失败不影响迁移结果
        pass
    if moved:
        logger.info("已迁移 %d 个旧版日志文件: %s -> %s", moved, legacy_logs, target_logs)
    return moved
