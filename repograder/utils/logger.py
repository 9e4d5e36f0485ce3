"""repograder 日志配置

文本格式面向终端，JSON 格式面向 CI 采集。日志一律写 stderr，
stdout 只留给命令输出与 CLI 结果。

只替换本模块安装的 handler，pytest caplog 等外部 handler 不受影响。
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Mapping

ENV_LEVEL = "REPOGRADER_LOG_LEVEL"
ENV_JSON = "REPOGRADER_LOG_JSON"

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"

_TRUTHY = {"1", "true", "yes", "on"}


class JSONFormatter(logging.Formatter):
    """一条记录一行 JSON

    字段: ts, level, logger, thread, msg；有异常时附加 exc。
    记录上的 repository 属性（extra={"repository": "007"}）原样带出。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        repository = getattr(record, "repository", None)
        if repository is not None:
            entry["repository"] = repository
        if record.exc_info and record.exc_info[1]:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class _OwnedHandler(logging.StreamHandler):
    """标记由 setup_logging 安装的 handler"""


def _drop_owned(root: logging.Logger) -> None:
    for handler in [h for h in root.handlers if isinstance(h, _OwnedHandler)]:
        root.removeHandler(handler)
        handler.close()


def setup_logging(level: str = "INFO", json_output: bool = False, stream: IO[str] | None = None) -> None:
    """安装根日志 handler；重复调用只保留最后一次的配置

    未知级别名按 INFO 处理。
    """
    root = logging.getLogger()
    _drop_owned(root)
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    handler = _OwnedHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)


def setup_logging_from_env(
    environ: Mapping[str, str] | None = None,
    *,
    default_level: str = "INFO",
    default_json: bool = False,
) -> None:
    """按 REPOGRADER_LOG_LEVEL / REPOGRADER_LOG_JSON 配置日志，未设置时用 default_*"""
    env = os.environ if environ is None else environ
    json_flag = env.get(ENV_JSON)
    setup_logging(
        level=env.get(ENV_LEVEL) or default_level,
        json_output=default_json if json_flag is None else json_flag.strip().lower() in _TRUTHY,
    )


def reset_logging() -> None:
    """移除 setup_logging 安装的 handler（测试中使用）"""
    _drop_owned(logging.getLogger())
