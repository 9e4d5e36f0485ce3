"""评测状态文件读写

每个仓库编号一个 JSON 文档：仓库地址、检出引用、检出策略、保存时间，
以及按节点限定名存放的评分状态。字段名沿用 camelCase，未知字段忽略。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from repograder.core.evaluation import EvaluationTree
from repograder.core.models import EvaluationStatus
from repograder.utils.yaml_io import write_json

logger = logging.getLogger(__name__)


@dataclass
class NodeSaveState:
    """单个节点的持久化状态"""

    achieved_points: float = 0.0
    achieved_points_defined: bool = False
    last_log_file: str | None = None
    status: EvaluationStatus | None = None
    comment: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeSaveState:
        """结构不符时抛 ValueError / TypeError"""
        if not isinstance(data, dict):
            raise ValueError(f"节点状态应为对象: {type(data).__name__}")
        status = data.get("status")
        try:
            parsed = EvaluationStatus(status) if status else None
        except ValueError:
            parsed = None
        return cls(
            achieved_points=float(data.get("achievedPoints") or 0.0),
            achieved_points_defined=bool(data.get("achievedPointsDefined")),
            last_log_file=data.get("lastLogFile"),
            status=parsed,
            comment=data.get("comment") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "achievedPoints": self.achieved_points,
            "achievedPointsDefined": self.achieved_points_defined,
            "lastLogFile": self.last_log_file,
            "status": self.status.value if self.status else None,
            "comment": self.comment,
        }


@dataclass
class EvaluationSaveData:
    """单个仓库的评测状态文件内容"""

    repository_url: str | None = None
    checked_out_reference: str | None = None
    placeholder_value: int | None = None
    evaluation_title: str | None = None
    checkout_strategy: str | None = None
    saved_at: str | None = None
    nodes: dict[str, NodeSaveState] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvaluationSaveData:
        nodes = data.get("nodes") or {}
        if not isinstance(nodes, dict):
            raise ValueError(f"nodes 应为对象: {type(nodes).__name__}")
        return cls(
            repository_url=data.get("repositoryUrl"),
            checked_out_reference=data.get("checkedOutReference"),
            placeholder_value=data.get("placeholderValue"),
            evaluation_title=data.get("evaluationTitle"),
            checkout_strategy=data.get("checkoutStrategy"),
            saved_at=data.get("savedAt"),
            nodes={str(k): NodeSaveState.from_dict(v or {}) for k, v in nodes.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "repositoryUrl": self.repository_url,
            "checkedOutReference": self.checked_out_reference,
            "placeholderValue": self.placeholder_value,
            "evaluationTitle": self.evaluation_title,
            "checkoutStrategy": self.checkout_strategy,
            "savedAt": self.saved_at,
            "nodes": {k: v.to_dict() for k, v in self.nodes.items()},
        }


class EvaluationStateStore:
    """评测状态文件存取"""

    def load(self, evaluation_file: Path | None) -> EvaluationSaveData | None:
        """读取状态文件；不存在或内容损坏时返回 None"""
        if evaluation_file is None or not evaluation_file.exists():
            return None
        try:
            with open(evaluation_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # ValueError 含 JSONDecodeError 与 UnicodeDecodeError
            logger.warning("评测状态文件无法读取: %s (%s)", evaluation_file, e)
            return None
        if not isinstance(data, dict):
            logger.warning("评测状态文件格式错误: %s", evaluation_file)
            return None
        try:
            return EvaluationSaveData.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("评测状态文件内容无效: %s (%s)", evaluation_file, e)
            return None

    def write_immediately(self, evaluation_file: Path, data: EvaluationSaveData) -> None:
        """写入 savedAt 并原子保存

        异常:
            OSError: 写入失败
        """
        data.saved_at = datetime.now(tz=timezone.utc).isoformat()
        write_json(evaluation_file, data.to_dict())
        logger.debug("评测状态已保存: %s", evaluation_file)


def capture_nodes(tree: EvaluationTree) -> dict[str, NodeSaveState]:
    """节点树 → 状态文件 nodes 映射（只保存叶子，父节点可重算）"""
    return {
        node.node_id: NodeSaveState(
            achieved_points=node.achieved_points,
            achieved_points_defined=node.achieved_points_defined,
            last_log_file=node.last_log_file,
            status=node.status,
            comment=node.comment,
        )
        for node in tree if node.is_leaf
    }


def restore_nodes(tree: EvaluationTree, nodes: dict[str, NodeSaveState]) -> None:
    """状态文件 nodes 映射 → 节点树；配置中已不存在的节点忽略"""
    tree.reset()
    for node_id, saved in nodes.items():
        if node_id not in tree:
            logger.debug("忽略未知节点状态: %s", node_id)
            continue
        node = tree.get(node_id)
        if not node.is_leaf:
            continue
        node.achieved_points = saved.achieved_points
        node.achieved_points_defined = saved.achieved_points_defined
        node.last_log_file = saved.last_log_file
        node.comment = saved.comment
        # 运行中状态不跨会话保留
        if saved.status is not None and saved.status != EvaluationStatus.RUNNING:
            node.status = saved.status
    tree.refresh()
