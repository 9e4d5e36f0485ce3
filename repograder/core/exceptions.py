"""统一异常体系

所有业务异常继承 RepoGraderError。
CLI 层据此输出友好提示，批处理层据此区分"单仓失败"与"契约违反"。
"""

from __future__ import annotations


class RepoGraderError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(RepoGraderError):
    """配置文件缺失或内容无效（如空的仓库 URL 模板）"""

    code = "CONFIG_ERROR"


class ValidationError(RepoGraderError, ValueError):
    """输入数据校验失败（如非法的占位符范围）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class GitServiceError(RepoGraderError):
    """Git 操作失败（clone / fetch / checkout / 引用解析）

    cause 保存底层原因（通常是 git 的 stderr），
    批量准备时拼接为 "[007] message (cause)"。
    """

    code = "GIT_ERROR"

    def __init__(self, message: str, cause: str | BaseException | None = None) -> None:
        super().__init__(message)
        if isinstance(cause, BaseException):
            cause = str(cause)
        self.cause = (cause or "").strip()


class ExecutionError(RepoGraderError):
    """命令执行失败"""

    code = "EXECUTION_ERROR"
