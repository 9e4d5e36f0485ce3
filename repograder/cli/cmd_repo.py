"""CLI — 仓库准备命令"""

from __future__ import annotations

import click

from repograder.cli import _svc, evaluation_options, handle_errors


def register(group: click.Group) -> None:
    group.add_command(prepare)


def _echo_progress(completed: int, total: int) -> None:
    click.echo(f"  进度 {completed}/{total}")


@click.command()
@click.argument("template", required=False)
@click.option("--start", type=int, required=True, help="起始编号（含）")
@click.option("--end", type=int, required=True, help="结束编号（含）")
@evaluation_options
@handle_errors
def prepare(template: str | None, start: int, end: int, config: str | None, base_dir: str | None) -> None:
    """按编号范围克隆/更新并检出学生仓库

    TEMPLATE 为仓库地址模板，省略时使用评测配置中的 repository_url_template。
    """
    result = _svc(config, base_dir).workflow.prepare(start, end, template, listener=_echo_progress)
    for ctx in result.contexts:
        ref = (ctx.checkout_info.reference or "-")[:12]
        strategy = ctx.checkout_info.strategy.encode() or "-"
        click.echo(f"  [{ctx.label}] {ref:12s} {strategy:20s} {ctx.repository_path}")
    if result.errors:
        click.echo("准备失败:", err=True)
        click.echo(result.errors, err=True, nl=False)
    click.echo(f"就绪 {len(result.contexts)} 个, 失败 {result.failed_count} 个")
    if not result.contexts:
        raise SystemExit(1)
