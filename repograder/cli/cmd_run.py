"""CLI — 评测节点运行命令"""

from __future__ import annotations

import click

from repograder.cli import _svc, evaluation_options, handle_errors
from repograder.core.evaluation import EvaluationTree
from repograder.core.models import RepositoryContext


def register(group: click.Group) -> None:
    group.add_command(run)
    group.add_command(nodes)


class _EchoListener:
    """实时输出命令执行过程，行首带仓库编号"""

    def __init__(self, label: str, verbose: bool) -> None:
        self._label = label
        self._verbose = verbose

    def on_command_started(self, command: str) -> None:
        click.echo(f"[{self._label}] $ {command}")

    def on_stdout(self, line: str) -> None:
        if self._verbose:
            click.echo(f"[{self._label}] {line}")

    def on_stderr(self, line: str) -> None:
        if self._verbose:
            click.echo(f"[{self._label}] {line}", err=True)

    def on_command_finished(self, command: str, exit_code: int) -> None:
        pass

    def on_failure(self, command: str, error: BaseException) -> None:
        click.echo(f"[{self._label}] 执行出错: {error}", err=True)

    def on_all_commands_finished(self, cancelled: bool) -> None:
        pass


@click.command()
@click.argument("node")
@click.option("--start", type=int, required=True, help="起始编号（含）")
@click.option("--end", type=int, required=True, help="结束编号（含）")
@click.option("--template", default=None, help="仓库地址模板（覆盖评测配置）")
@click.option("--timeout", type=float, default=None, help="单个仓库的执行超时（秒）")
@click.option("--verbose", "-v", is_flag=True, help="打印命令输出")
@evaluation_options
@handle_errors
def run(
    node: str, start: int, end: int, template: str | None, timeout: float | None,
    verbose: bool, config: str | None, base_dir: str | None,
) -> None:
    """准备仓库后在每个仓库中运行评测节点（NODE 形如 分类/任务）"""
    workflow = _svc(config, base_dir).workflow
    prepared = workflow.prepare(start, end, template)
    if prepared.errors:
        click.echo(prepared.errors, err=True, nl=False)

    def _listener(ctx: RepositoryContext) -> _EchoListener:
        return _EchoListener(ctx.label, verbose)

    results = workflow.run_node_for_all(node, _listener, timeout)
    for r in results:
        click.echo(
            f"  [{r.context.label}] {r.outcome.value:9s} exit={r.exit_code:<4d} "
            f"得分={r.achieved_points:g}  日志={r.log_file or '-'}"
        )
    passed = sum(1 for r in results if r.success)
    click.echo(f"通过 {passed}/{len(results)}")


@click.command()
@evaluation_options
@handle_errors
def nodes(config: str | None, base_dir: str | None) -> None:
    """列出评测配置中可运行的节点"""
    tree = EvaluationTree.from_config(_svc(config, base_dir).evaluation)
    runnable = tree.runnable_nodes()
    if not runnable:
        click.echo("评测配置中没有可运行的节点。")
        return
    for n in runnable:
        click.echo(f"  {n.node_id:30s} {tree.max_points(n.node_id):g} 分")
        for cmd in n.commands:
            click.echo(f"      $ {cmd}")
