"""pkgcore 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
服务容器按调用懒创建，配置文件由 --config 指定。
"""

from __future__ import annotations

import functools
import os
from typing import Any, Callable, TypeVar

import click

from pkgcore import __version__
from pkgcore.core.exceptions import PkgCoreError
from pkgcore.utils.logger import setup_logging

F = TypeVar("F", bound=Callable[..., Any])


def _svc() -> Any:
    """获取当前命令的服务容器，首次访问时加载配置"""
    ctx = click.get_current_context().find_root()
    obj = ctx.ensure_object(dict)
    if "container" not in obj:
        from pkgcore.core.config import Config
        from pkgcore.services.container import ServiceContainer
        obj["container"] = ServiceContainer(Config.from_file(obj.get("config", "pkgcore.yml")))
    return obj["container"]


def handle_errors(func: F) -> F:
    """把引擎异常转换为带错误码的 ClickException"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PkgCoreError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e

    return wrapper  # type: ignore[return-value]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="pkgcore.yml", help="配置文件路径")
@click.pass_context
def main(ctx: click.Context, config_path: str) -> None:
    """pkgcore - 包依赖解析与安装引擎"""
    setup_logging(
        level=os.getenv("PKGCORE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("PKGCORE_LOG_JSON", "") == "1",
    )
    ctx.ensure_object(dict)["config"] = config_path


# 注册各领域子命令
from pkgcore.cli.cmd_packages import register as _reg_packages  # noqa: E402
from pkgcore.cli.cmd_restore import register as _reg_restore  # noqa: E402
from pkgcore.cli.cmd_feed import register as _reg_feed  # noqa: E402

_reg_packages(main)
_reg_restore(main)
_reg_feed(main)
