"""CLI — 包源命令（打包、源列表）"""

from __future__ import annotations

import click

from pkgcore.cli import _svc, handle_errors


def register(group: click.Group) -> None:
    group.add_command(pack)
    group.add_command(sources)


@click.command()
@click.argument("source_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", "output_dir", default=".", help="归档输出目录（通常为某个包源目录）")
@handle_errors
def pack(source_dir: str, output_dir: str) -> None:
    """把包含 package.yml 的目录打包为包源归档"""
    from pkgcore.core.repo.feed import build_archive
    target = build_archive(source_dir, output_dir)
    click.echo(f"已生成: {target}")


@click.command()
@handle_errors
def sources() -> None:
    """列出配置的包源"""
    cfg = _svc().config
    if not cfg.sources:
        click.echo("没有配置包源。")
        return
    for s in cfg.sources:
        state = "" if s.enabled else "  (已禁用)"
        click.echo(f"  {s.name:20s} {s.path}{state}")
