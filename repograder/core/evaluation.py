"""评测配置与评测节点树

- EvaluationConfig: 评测配置文件（YAML/JSON）→ 标题、仓库模板、tag、截止日、任务树
- EvaluationTree:   节点按限定名（"分类/任务"）存放在扁平表中，
                    父节点的分数与状态通过显式 recompute_aggregates() 逐级向上重算
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from repograder.core.exceptions import ConfigError, ValidationError
from repograder.core.models import DEFAULT_PLACEHOLDER, EvaluationStatus
from repograder.utils.yaml_io import load_mapping

logger = logging.getLogger(__name__)

# 兼容旧版 JSON 配置中的 camelCase 字段
_KEY_ALIASES = {
    "repositoryUrlTemplate": "repository_url_template",
    "repositoryNumberPlaceholder": "repository_number_placeholder",
    "maxPoints": "max_points",
}


def _normalize_keys(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError(f"{what}应为映射: {data!r}")
    return {_KEY_ALIASES.get(k, k): v for k, v in data.items()}


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{what} 应为列表: {value!r}")
    return value


def build_slug(title: str | None) -> str:
    """评测标题 → 目录名：去音标、小写、非 [a-z0-9-_] 折叠为 '-'"""
    text = (title or "").strip() or "default"
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9\-_]+", "-", text.lower())
    text = re.sub(r"-+", "-", text).strip("-")
    return text or "default"


# =========================================================================
# 评测配置
# =========================================================================


@dataclass
class EvaluationNodeConfig:
    """任务树中的一个节点"""

    name: str
    max_points: float = 0.0
    commands: list[str] = field(default_factory=list)
    children: list[EvaluationNodeConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluationNodeConfig:
        data = _normalize_keys(data, "评测节点")
        name = str(data.get("name", "")).strip()
        if not name:
            raise ConfigError("评测节点缺少 name")
        if "/" in name:
            raise ConfigError(f"评测节点名不能包含 '/': {name}")
        try:
            max_points = float(data.get("max_points", 0.0) or 0.0)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"评测节点 {name} 的 max_points 无效: {e}") from e
        return cls(
            name=name,
            max_points=max_points,
            commands=[str(c) for c in _as_list(data.get("commands"), f"{name} 的 commands")],
            children=[cls.from_dict(c) for c in _as_list(data.get("children"), f"{name} 的 children")],
        )


@dataclass
class EvaluationConfig:
    """评测配置"""

    title: str = ""
    repository_url_template: str = ""
    repository_number_placeholder: str = DEFAULT_PLACEHOLDER
    tag: str | None = None
    deadline: date | None = None
    categories: list[EvaluationNodeConfig] = field(default_factory=list)

    @property
    def slug(self) -> str:
        return build_slug(self.title)

    @property
    def evaluation_file_name(self) -> str:
        return f"{self.slug}.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluationConfig:
        data = _normalize_keys(data, "评测配置")
        return cls(
            title=str(data.get("title") or ""),
            repository_url_template=str(data.get("repository_url_template") or ""),
            repository_number_placeholder=(
                str(data.get("repository_number_placeholder") or "").strip() or DEFAULT_PLACEHOLDER
            ),
            tag=(str(data["tag"]).strip() or None) if data.get("tag") else None,
            deadline=_parse_deadline(data.get("deadline")),
            categories=[
                EvaluationNodeConfig.from_dict(c) for c in _as_list(data.get("categories"), "categories")
            ],
        )

    @classmethod
    def from_file(cls, path: str | Path) -> EvaluationConfig:
        """加载评测配置；文件不存在视为配置错误"""
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"评测配置文件不存在: {p}")
        try:
            data = load_mapping(p)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"评测配置无法解析: {p} ({e})") from e
        cfg = cls.from_dict(data)
        logger.info("评测配置已加载: %s (title=%s, 分类=%d)", p, cfg.title or "-", len(cfg.categories))
        return cfg


def _parse_deadline(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"deadline 不是合法的 ISO 日期: {value}") from e


# =========================================================================
# 评测节点树
# =========================================================================


@dataclass
class EvaluationNodeState:
    """节点运行态"""

    node_id: str
    name: str
    max_points: float
    commands: list[str]
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    status: EvaluationStatus = EvaluationStatus.PENDING
    achieved_points: float = 0.0
    achieved_points_defined: bool = False
    comment: str = ""
    last_log_file: str | None = None

    @property
    def is_leaf(self) -> bool:
        return not self.children


class EvaluationTree:
    """以限定名为键的评测节点表"""

    def __init__(self) -> None:
        self._nodes: dict[str, EvaluationNodeState] = {}
        self._roots: list[str] = []

    @classmethod
    def from_config(cls, config: EvaluationConfig) -> EvaluationTree:
        tree = cls()
        for category in config.categories:
            tree._add(category, parent=None)
        for node_id in tree._roots:
            tree._recompute_subtree(node_id)
        return tree

    def _add(self, cfg: EvaluationNodeConfig, parent: str | None) -> str:
        node_id = f"{parent}/{cfg.name}" if parent else cfg.name
        if node_id in self._nodes:
            raise ConfigError(f"评测节点重复: {node_id}")
        self._nodes[node_id] = EvaluationNodeState(
            node_id=node_id, name=cfg.name, max_points=cfg.max_points,
            commands=list(cfg.commands), parent=parent,
        )
        if parent is None:
            self._roots.append(node_id)
        else:
            self._nodes[parent].children.append(node_id)
        for child in cfg.children:
            self._add(child, parent=node_id)
        return node_id

    # ---- 查询 ----

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self):
        """深度优先（配置顺序）遍历"""
        stack = list(reversed(self._roots))
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    @property
    def roots(self) -> list[EvaluationNodeState]:
        return [self._nodes[r] for r in self._roots]

    def get(self, node_id: str) -> EvaluationNodeState:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ValidationError(f"未知的评测节点: {node_id}") from None

    def runnable_nodes(self) -> list[EvaluationNodeState]:
        """所有配置了命令的节点"""
        return [n for n in self if n.commands]

    def max_points(self, node_id: str) -> float:
        node = self.get(node_id)
        if node.is_leaf:
            return node.max_points
        return sum(self.max_points(c) for c in node.children)

    def total_points(self) -> tuple[float, float]:
        """(已得分, 满分)"""
        return (
            sum(self._nodes[r].achieved_points for r in self._roots),
            sum(self.max_points(r) for r in self._roots),
        )

    # ---- 更新 ----

    def set_result(
        self, node_id: str, status: EvaluationStatus, achieved_points: float | None = None,
    ) -> None:
        """写入叶子结果并逐级重算父节点"""
        node = self.get(node_id)
        node.status = status
        if achieved_points is not None:
            node.achieved_points = achieved_points
            node.achieved_points_defined = True
        if node.parent is not None:
            self.recompute_aggregates(node.parent)

    def recompute_aggregates(self, node_id: str) -> None:
        """重算 node_id 的汇总分数/状态，并沿父链向上直到根"""
        current: str | None = node_id
        while current is not None:
            node = self._nodes[current]
            if not node.is_leaf:
                children = [self._nodes[c] for c in node.children]
                node.achieved_points = sum(c.achieved_points for c in children)
                node.status = aggregate_status([c.status for c in children])
            current = node.parent

    def _recompute_subtree(self, node_id: str) -> None:
        node = self._nodes[node_id]
        for child in node.children:
            self._recompute_subtree(child)
        if not node.is_leaf:
            children = [self._nodes[c] for c in node.children]
            node.achieved_points = sum(c.achieved_points for c in children)
            node.status = aggregate_status([c.status for c in children])

    def reset(self) -> None:
        """所有节点回到初始状态（重新准备仓库时调用）"""
        for node in self._nodes.values():
            node.status = EvaluationStatus.PENDING
            node.achieved_points = 0.0
            node.achieved_points_defined = False
            node.comment = ""
            node.last_log_file = None

    def refresh(self) -> None:
        """叶子状态批量写入后整体重算"""
        for node_id in self._roots:
            self._recompute_subtree(node_id)


def aggregate_status(statuses: list[EvaluationStatus]) -> EvaluationStatus:
    """子节点状态汇总：FAILED > RUNNING > PENDING > CANCELLED > SUCCESS"""
    if not statuses:
        return EvaluationStatus.PENDING
    for candidate in (
        EvaluationStatus.FAILED,
        EvaluationStatus.RUNNING,
        EvaluationStatus.PENDING,
        EvaluationStatus.CANCELLED,
    ):
        if candidate in statuses:
            return candidate
    return EvaluationStatus.SUCCESS
