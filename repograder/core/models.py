"""核心数据模型

代码仓检出与命令执行两个子系统共享的值类型集中定义于此：
占位符范围、检出策略/检出信息、仓库上下文、准备请求/结果、命令结果分类。
所有值类型均不可变（frozen），重新准备时整体替换而非原地修改。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from pathlib import Path

from repograder.core.exceptions import ValidationError

DEFAULT_PLACEHOLDER = "{{number}}"


def format_placeholder(value: int) -> str:
    """占位符值格式化为 3 位补零编号，例如 7 -> "007" """
    return f"{value:03d}"


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# =========================================================================
# 占位符范围
# =========================================================================


@dataclass(frozen=True)
class PlaceholderRange:
    """闭区间 [start, end]，start 必须为正且 end >= start"""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start <= 0:
            raise ValidationError("start must be positive")
        if self.end < self.start:
            raise ValidationError("end must be greater or equal to start")

    def values(self) -> list[int]:
        return list(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return self.end - self.start + 1


# =========================================================================
# 检出策略
# =========================================================================


class CheckoutMode(str, Enum):
    """检出方式"""
    TAG = "TAG"
    DEADLINE = "DEADLINE"
    HEAD = "HEAD"


@dataclass(frozen=True)
class CheckoutStrategy:
    """检出策略 — mode + detail

    detail: TAG 时为标签名，DEADLINE 时为 ISO 日期，HEAD 时为空。
    编码格式为 "MODE" 或 "MODE:detail"。
    """

    mode: CheckoutMode | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", _blank_to_none(self.detail))

    @classmethod
    def none(cls) -> CheckoutStrategy:
        return cls()

    @classmethod
    def of(cls, mode: CheckoutMode | None, detail: str | None = None) -> CheckoutStrategy:
        if mode is None:
            return cls.none()
        return cls(mode=mode, detail=detail)

    @classmethod
    def decode(cls, encoded: str | None) -> CheckoutStrategy | None:
        """解析编码字符串，空白或无法识别时返回 None"""
        if encoded is None or not encoded.strip():
            return None
        parts = encoded.strip().split(":", 1)
        try:
            mode = CheckoutMode(parts[0].upper())
        except ValueError:
            return None
        return cls(mode=mode, detail=parts[1] if len(parts) > 1 else None)

    def encode(self) -> str | None:
        if self.mode is None:
            return None
        if self.detail is None:
            return self.mode.value
        return f"{self.mode.value}:{self.detail}"

    def with_detail(self, detail: str | None) -> CheckoutStrategy:
        return replace(self, detail=detail)

    def with_mode(self, mode: CheckoutMode | None) -> CheckoutStrategy:
        return replace(self, mode=mode)


@dataclass(frozen=True)
class CheckoutInfo:
    """实际检出结果 — reference 为检出的 commit SHA"""

    reference: str | None = None
    strategy: CheckoutStrategy = field(default_factory=CheckoutStrategy.none)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reference", _blank_to_none(self.reference))
        if self.strategy is None:
            object.__setattr__(self, "strategy", CheckoutStrategy.none())

    def with_reference(self, reference: str | None) -> CheckoutInfo:
        return CheckoutInfo(reference, self.strategy)

    def with_strategy(self, strategy: CheckoutStrategy) -> CheckoutInfo:
        return CheckoutInfo(self.reference, strategy)


# =========================================================================
# 仓库上下文 / 准备请求 / 准备结果
# =========================================================================


@dataclass(frozen=True)
class RepositoryContext:
    """单个已准备仓库的上下文，由调用方持有整个评测会话"""

    placeholder_value: int
    repository_url: str
    repository_path: Path
    evaluation_directory: Path
    evaluation_file: Path
    logs_directory: Path
    checkout_info: CheckoutInfo

    @property
    def label(self) -> str:
        return format_placeholder(self.placeholder_value)


@dataclass(frozen=True)
class RepositoryPreparationRequest:
    """批量准备请求，通过 builder() 构造"""

    repository_template: str
    placeholder_range: PlaceholderRange
    repositories_root: Path
    evaluations_root: Path
    evaluation_file_name: str
    evaluation_title: str = ""
    repository_number_placeholder: str = DEFAULT_PLACEHOLDER
    tag: str | None = None
    deadline: date | None = None

    @staticmethod
    def builder() -> RepositoryPreparationRequestBuilder:
        return RepositoryPreparationRequestBuilder()


class RepositoryPreparationRequestBuilder:
    """RepositoryPreparationRequest 的链式构造器"""

    def __init__(self) -> None:
        self._template: str | None = None
        self._range: PlaceholderRange | None = None
        self._repositories_root: Path | None = None
        self._evaluations_root: Path | None = None
        self._file_name: str | None = None
        self._title: str | None = None
        self._placeholder: str | None = None
        self._tag: str | None = None
        self._deadline: date | None = None

    def repository_template(self, template: str) -> RepositoryPreparationRequestBuilder:
        self._template = template
        return self

    def placeholder_range(self, placeholder_range: PlaceholderRange) -> RepositoryPreparationRequestBuilder:
        self._range = placeholder_range
        return self

    def repositories_root(self, root: str | Path) -> RepositoryPreparationRequestBuilder:
        self._repositories_root = Path(root)
        return self

    def evaluations_root(self, root: str | Path) -> RepositoryPreparationRequestBuilder:
        self._evaluations_root = Path(root)
        return self

    def evaluation_file_name(self, name: str) -> RepositoryPreparationRequestBuilder:
        self._file_name = name
        return self

    def evaluation_title(self, title: str | None) -> RepositoryPreparationRequestBuilder:
        self._title = title
        return self

    def repository_number_placeholder(self, placeholder: str | None) -> RepositoryPreparationRequestBuilder:
        self._placeholder = placeholder
        return self

    def tag(self, tag: str | None) -> RepositoryPreparationRequestBuilder:
        self._tag = tag
        return self

    def deadline(self, deadline: date | None) -> RepositoryPreparationRequestBuilder:
        self._deadline = deadline
        return self

    def build(self) -> RepositoryPreparationRequest:
        missing = [
            name for name, value in (
                ("repository_template", self._template),
                ("placeholder_range", self._range),
                ("repositories_root", self._repositories_root),
                ("evaluations_root", self._evaluations_root),
                ("evaluation_file_name", self._file_name),
            ) if value is None
        ]
        if missing:
            raise ValidationError(f"准备请求缺少必填字段: {', '.join(missing)}", details=missing)
        return RepositoryPreparationRequest(
            repository_template=self._template,  # type: ignore[arg-type]
            placeholder_range=self._range,  # type: ignore[arg-type]
            repositories_root=self._repositories_root,  # type: ignore[arg-type]
            evaluations_root=self._evaluations_root,  # type: ignore[arg-type]
            evaluation_file_name=self._file_name,  # type: ignore[arg-type]
            evaluation_title=self._title or "",
            repository_number_placeholder=_blank_to_none(self._placeholder) or DEFAULT_PLACEHOLDER,
            tag=_blank_to_none(self._tag),
            deadline=self._deadline,
        )


@dataclass(frozen=True)
class RepositoryPreparationResult:
    """批量准备结果 — contexts 只含成功的编号，errors 为逐行错误记录"""

    contexts: tuple[RepositoryContext, ...] = ()
    errors: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "contexts", tuple(self.contexts or ()))
        object.__setattr__(self, "errors", self.errors or "")

    @property
    def success(self) -> bool:
        return not self.errors.strip()

    @property
    def failed_count(self) -> int:
        return sum(1 for line in self.errors.splitlines() if line.startswith("["))


# =========================================================================
# 命令执行结果
# =========================================================================


class CommandOutcome(str, Enum):
    """一批命令的最终结果"""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @classmethod
    def classify(cls, *, cancelled: bool, failed: bool) -> CommandOutcome:
        """取消优先于失败，失败优先于成功"""
        if cancelled:
            return cls.CANCELLED
        if failed:
            return cls.FAILED
        return cls.SUCCESS


class EvaluationStatus(str, Enum):
    """评测节点状态"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
