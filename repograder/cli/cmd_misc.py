"""CLI — 杂项命令（评分汇总、配置模板）"""

from __future__ import annotations

from pathlib import Path

import click

from repograder.cli import _svc, evaluation_options, handle_errors
from repograder.core.models import PlaceholderRange, format_placeholder
from repograder.utils.yaml_io import save_yaml


def register(group: click.Group) -> None:
    group.add_command(status)
    group.add_command(init_config_cmd)


# ---- 评分汇总 ----

@click.command()
@click.option("--start", type=int, required=True, help="起始编号（含）")
@click.option("--end", type=int, required=True, help="结束编号（含）")
@evaluation_options
@handle_errors
def status(start: int, end: int, config: str | None, base_dir: str | None) -> None:
    """汇总已保存的评分状态"""
    workflow = _svc(config, base_dir).workflow
    for value in PlaceholderRange(start, end).values():
        tree, saved = workflow.load_saved(value)
        label = format_placeholder(value)
        if saved is None:
            click.echo(f"  [{label}] 未准备")
            continue
        achieved, total = tree.total_points()
        ref = (saved.checked_out_reference or "-")[:12]
        click.echo(f"  [{label}] {achieved:g}/{total:g}  {ref}  {saved.checkout_strategy or '-'}")
        for node in tree:
            if node.is_leaf:
                click.echo(f"      {node.node_id:30s} {node.status.value:9s} {node.achieved_points:g}")


# ---- 配置模板 ----

_STARTER = {
    "title": "Assignment 1",
    "repository_url_template": "https://git.example.com/course/student-{{number}}.git",
    "repository_number_placeholder": "{{number}}",
    "tag": "submission",
    "deadline": "2026-01-31",
    "categories": [
        {
            "name": "Build",
            "children": [
                {"name": "Compile", "max_points": 5, "commands": ["make"]},
            ],
        },
        {
            "name": "Tests",
            "children": [
                {"name": "Unit", "max_points": 10, "commands": ["make test"]},
            ],
        },
    ],
}


@click.command(name="init-config")
@click.argument("path", default="evaluation.yml")
@click.option("--force", is_flag=True, help="覆盖已存在的文件")
def init_config_cmd(path: str, force: bool) -> None:
    """生成评测配置模板"""
    target = Path(path)
    if target.exists() and not force:
        raise click.ClickException(f"文件已存在: {target}（使用 --force 覆盖）")
    save_yaml(target, _STARTER)
    click.echo(f"评测配置模板已生成: {target}")
