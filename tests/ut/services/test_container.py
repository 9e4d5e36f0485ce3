"""ServiceContainer 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import repograder.core.config as cfgmod
from repograder.core.exceptions import ConfigError
from repograder.services.container import (
    ServiceContainer,
    get_container,
    reset_container,
    set_container,
)
from repograder.utils.yaml_io import save_yaml


@pytest.fixture(autouse=True)
def _setup_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """确保测试有独立的配置和数据目录"""
    evaluation = tmp_path / "evaluation.yml"
    save_yaml(evaluation, {
        "title": "Lab",
        "repository_url_template": "https://h/s-{{number}}.git",
        "categories": [{"name": "A", "max_points": 1, "commands": ["true"]}],
    })
    cfg = cfgmod.Config(base_dir=str(tmp_path / "work"), evaluation_config=str(evaluation))
    monkeypatch.setattr(cfgmod, "_current", cfg)
    reset_container()
    yield
    reset_container()


class TestServiceContainer:
    def test_lazy_loading(self) -> None:
        c = ServiceContainer()
        assert len(c._instances) == 0
        _ = c.git
        assert "git" in c._instances

    def test_shared_instances(self) -> None:
        c = ServiceContainer()
        assert c.preparation is c.preparation
        assert c.workflow._runner is c.command_runner
        assert c.workflow._state_store is c.state_store

    def test_workflow_uses_config(self, tmp_path: Path) -> None:
        wf = ServiceContainer().workflow
        assert wf.evaluation.title == "Lab"
        assert wf.evaluations_root == tmp_path / "work" / "evaluations" / "lab"

    def test_runner_timeouts_from_config(self) -> None:
        cfg = cfgmod.Config(max_batches=2, drain_timeout=0.1, cancel_grace=0.2)
        runner = ServiceContainer(config=cfg).command_runner
        assert runner.max_batches == 2
        assert runner.drain_timeout == 0.1
        assert runner.cancel_grace == 0.2

    def test_missing_evaluation_config(self, tmp_path: Path) -> None:
        c = ServiceContainer(config=cfgmod.Config(evaluation_config=str(tmp_path / "none.yml")))
        with pytest.raises(ConfigError):
            _ = c.workflow

    def test_close_releases_runner(self) -> None:
        c = ServiceContainer()
        _ = c.command_runner
        c.close()
        assert "command_runner" not in c._instances


class TestGlobalContainer:
    def test_singleton(self) -> None:
        assert get_container() is get_container()

    def test_set_and_reset(self) -> None:
        custom = ServiceContainer()
        set_container(custom)
        assert get_container() is custom
        reset_container()
        assert get_container() is not custom
