"""repograder 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import dataclasses
import functools
from typing import Any, Callable

import click

from repograder import __version__
from repograder.core.config import DEFAULT_SETTINGS_FILE, get_config, init_config
from repograder.core.exceptions import RepoGraderError
from repograder.services.container import ServiceContainer, get_container, set_container
from repograder.utils.logger import setup_logging_from_env


def _svc(config: str | None = None, base_dir: str | None = None) -> ServiceContainer:
    """按命令行覆盖项装配全局服务容器"""
    if config is None and base_dir is None:
        return get_container()
    overrides: dict[str, Any] = {}
    if config is not None:
        overrides["evaluation_config"] = config
    if base_dir is not None:
        overrides["base_dir"] = base_dir
    container = ServiceContainer(config=dataclasses.replace(get_config(), **overrides))
    set_container(container)
    return container


def evaluation_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """--config / --base-dir 两个公共选项"""
    func = click.option("--base-dir", default=None, help="工作根目录（repos/ 与 evaluations/ 所在目录）")(func)
    func = click.option("--config", "-c", default=None, help="评测配置文件路径（YAML/JSON）")(func)
    return func


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """业务异常转为 click 的友好错误输出"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except RepoGraderError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--settings", default=DEFAULT_SETTINGS_FILE, help="全局配置文件路径")
def main(settings: str) -> None:
    """repograder - 学生代码仓批量检出与评测"""
    try:
        cfg = init_config(settings)
    except RepoGraderError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e
    # 环境变量优先于全局配置文件
    setup_logging_from_env(default_level=cfg.log_level, default_json=cfg.log_json)


# 注册各领域子命令
from repograder.cli.cmd_repo import register as _reg_repo  # noqa: E402
from repograder.cli.cmd_run import register as _reg_run  # noqa: E402
from repograder.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_repo(main)
_reg_run(main)
_reg_misc(main)
