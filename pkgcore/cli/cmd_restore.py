"""CLI — 包恢复命令"""

from __future__ import annotations

import sys

import click

from pkgcore.cli import _svc, handle_errors


def register(group: click.Group) -> None:
    group.add_command(restore)


@click.command()
@click.argument("reference_files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--consent", is_flag=True, help="本次运行同意包恢复")
@click.option("--serial", is_flag=True, help="禁用并行恢复")
@handle_errors
def restore(reference_files: tuple[str, ...], consent: bool, serial: bool) -> None:
    """按 packages.config 恢复缺失的包（默认读取当前目录的 packages.config）"""
    from pkgcore.core.reference_file import REFERENCE_FILE
    from pkgcore.core.restore import RestoreOutcome

    orchestrator = _svc().restore
    if consent:
        orchestrator.consent_granted = True
    if serial:
        orchestrator.disable_parallel = True

    result = orchestrator.restore_files(reference_files or [REFERENCE_FILE])
    click.echo(
        f"恢复完成: 安装 {len(result.installed)}, 跳过 {len(result.skipped)}, "
        f"失败 {len(result.failed)}, 取消 {len(result.cancelled)}"
    )
    for r in result.results:
        if r.outcome in (RestoreOutcome.FAILED, RestoreOutcome.CANCELLED):
            click.echo(f"  {r.outcome.value:9s} {r.identity}: {r.message}")
    if not result.success:
        sys.exit(1)
