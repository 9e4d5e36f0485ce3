"""命令日志文件

每次运行节点命令后在评测目录 logs/ 下写入一个日志文件：
  <YYYYmmdd_HHMMSS>_<节点名>.log
内容为执行的命令列表 + 完整输出记录。
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path

from repograder.services.repo.preparation import LOGS_DIR_NAME
from repograder.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


def sanitize_log_name(name: str) -> str:
    """节点名中的非 [a-zA-Z0-9-_] 字符替换为 '_'"""
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", name or "") or "node"


class CommandLogService:
    """命令日志写入"""

    def __init__(self, clock=datetime.now) -> None:
        self._clock = clock

    def write_log(
        self,
        evaluation_dir: Path,
        node_name: str,
        commands: list[str],
        output: str,
    ) -> str:
        """写入日志文件，返回相对 evaluation_dir 的路径（'/' 分隔）

        异常:
            OSError: 写入失败
        """
        logs_dir = Path(evaluation_dir) / LOGS_DIR_NAME
        logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().strftime("%Y%m%d_%H%M%S")
        log_file = logs_dir / f"{stamp}_{sanitize_log_name(node_name)}.log"

        lines = ["# Commands"]
        lines.extend(f"$ {cmd}" for cmd in commands)
        lines.append("")
        lines.append("# Output")
        content = "\n".join(lines) + "\n" + (output or "")
        atomic_write(log_file, content)

        relative = log_file.relative_to(evaluation_dir).as_posix()
        logger.debug("命令日志已写入: %s", log_file)
        return relative
