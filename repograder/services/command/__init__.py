"""命令执行服务

- runner.py: 命令批次执行、取消与结果收集
- log.py:    命令日志文件写入
"""

from repograder.services.command.log import CommandLogService
from repograder.services.command.runner import (
    CommandBatchRecorder,
    CommandExecution,
    CommandRunner,
    EventListenerAdapter,
)

__all__ = [
    "CommandRunner",
    "CommandExecution",
    "CommandBatchRecorder",
    "EventListenerAdapter",
    "CommandLogService",
]
