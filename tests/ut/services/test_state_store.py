"""评测状态文件单元测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from repograder.core.evaluation import EvaluationConfig, EvaluationTree
from repograder.core.models import EvaluationStatus
from repograder.services.state import (
    EvaluationSaveData,
    EvaluationStateStore,
    NodeSaveState,
    capture_nodes,
    restore_nodes,
)


@pytest.fixture()
def tree() -> EvaluationTree:
    return EvaluationTree.from_config(EvaluationConfig.from_dict({"categories": [
        {"name": "Build", "children": [
            {"name": "Compile", "max_points": 5, "commands": ["make"]},
            {"name": "Warnings", "max_points": 1, "commands": ["make -Werror"]},
        ]},
    ]}))


class TestEvaluationStateStore:
    def test_write_and_load(self, tmp_path: Path) -> None:
        store = EvaluationStateStore()
        path = tmp_path / "001" / "a1.json"
        data = EvaluationSaveData(
            repository_url="https://h/s-001.git",
            checked_out_reference="abc",
            checkout_strategy="TAG:v1",
            nodes={"Build/Compile": NodeSaveState(5.0, True, "logs/x.log", EvaluationStatus.SUCCESS)},
        )
        store.write_immediately(path, data)

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["savedAt"]
        assert raw["nodes"]["Build/Compile"]["status"] == "SUCCESS"
        loaded = store.load(path)
        assert loaded is not None
        assert loaded.checkout_strategy == "TAG:v1"
        assert loaded.nodes["Build/Compile"].last_log_file == "logs/x.log"

    def test_missing_file(self, tmp_path: Path) -> None:
        assert EvaluationStateStore().load(tmp_path / "none.json") is None

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert EvaluationStateStore().load(path) is None

    def test_not_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "bin.json"
        path.write_bytes(b'{"repositoryUrl": "\xff\xfe"}')
        assert EvaluationStateStore().load(path) is None

    @pytest.mark.parametrize("content", [
        [1, 2],
        {"nodes": [1, 2]},
        {"nodes": {"A": "SUCCESS"}},
        {"nodes": {"A": {"achievedPoints": "x"}}},
        {"nodes": {"A": {"achievedPoints": [1]}}},
    ])
    def test_wrong_shape(self, tmp_path: Path, content) -> None:
        path = tmp_path / "shape.json"
        path.write_text(json.dumps(content), encoding="utf-8")
        assert EvaluationStateStore().load(path) is None

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "x.json"
        path.write_text(json.dumps({"repositoryUrl": "u", "future": 1, "nodes": {
            "A": {"status": "WHATEVER", "extra": True},
        }}), encoding="utf-8")
        loaded = EvaluationStateStore().load(path)
        assert loaded is not None
        assert loaded.repository_url == "u"
        assert loaded.nodes["A"].status is None


class TestNodeMapping:
    def test_roundtrip_through_tree(self, tree: EvaluationTree) -> None:
        tree.set_result("Build/Compile", EvaluationStatus.SUCCESS, 5)
        tree.get("Build/Compile").last_log_file = "logs/c.log"
        nodes = capture_nodes(tree)
        assert set(nodes) == {"Build/Compile", "Build/Warnings"}

        fresh = EvaluationTree.from_config(EvaluationConfig.from_dict({"categories": [
            {"name": "Build", "children": [
                {"name": "Compile", "max_points": 5, "commands": ["make"]},
                {"name": "Warnings", "max_points": 1, "commands": ["make -Werror"]},
            ]},
        ]}))
        restore_nodes(fresh, nodes)
        assert fresh.get("Build").achieved_points == 5
        assert fresh.get("Build").status == EvaluationStatus.PENDING
        assert fresh.get("Build/Compile").last_log_file == "logs/c.log"

    def test_running_not_restored(self, tree: EvaluationTree) -> None:
        restore_nodes(tree, {"Build/Compile": NodeSaveState(status=EvaluationStatus.RUNNING)})
        assert tree.get("Build/Compile").status == EvaluationStatus.PENDING

    def test_unknown_node_ignored(self, tree: EvaluationTree) -> None:
        restore_nodes(tree, {"Gone/Task": NodeSaveState(achieved_points=3)})
        assert tree.total_points() == (0.0, 6.0)
