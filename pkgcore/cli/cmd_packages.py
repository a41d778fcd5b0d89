"""CLI — 包安装 / 卸载 / 更新 / 查询命令

带 --project 时操作绑定到该项目的 packages.config（引用计数），
否则直接操作本地存储。
"""

from __future__ import annotations

import click

from pkgcore.cli import _svc, handle_errors
from pkgcore.core.models import InstallPlan


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(uninstall)
    group.add_command(update)
    group.add_command(plan)
    group.add_command(list_packages)
    group.add_command(updates)


def _echo_plan(plan: InstallPlan | None, empty_message: str) -> None:
    if plan is None or plan.is_empty:
        click.echo(empty_message)
        return
    for op in plan:
        click.echo(f"  {op.action.value:9s} {op.package.identity}")


_project_option = click.option(
    "--project", "project", default=None, type=click.Path(dir_okay=False),
    help="项目引用文件路径 (packages.config)",
)


@click.command()
@click.argument("package_id")
@click.option("--version", default=None, help="指定版本（默认最新稳定版）")
@click.option("--ignore-dependencies", is_flag=True, help="不安装依赖")
@click.option("--prerelease", is_flag=True, help="允许预发布版本")
@_project_option
@handle_errors
def install(
    package_id: str, version: str | None, ignore_dependencies: bool,
    prerelease: bool, project: str | None,
) -> None:
    """安装包及其依赖"""
    svc = _svc()
    target = svc.project(project) if project else svc.package_manager
    result = target.install_package(
        package_id, version,
        ignore_dependencies=ignore_dependencies,
        allow_prerelease=prerelease or svc.config.allow_prerelease,
    )
    _echo_plan(result, f"无需安装: {package_id} 已就绪")


@click.command()
@click.argument("package_id")
@click.option("--version", default=None, help="本地安装了多个版本时指定版本")
@click.option("--force", is_flag=True, help="即使仍被其他包依赖也卸载")
@click.option("--remove-dependencies", is_flag=True, help="同时卸载不再被需要的依赖")
@_project_option
@handle_errors
def uninstall(
    package_id: str, version: str | None, force: bool,
    remove_dependencies: bool, project: str | None,
) -> None:
    """卸载包"""
    svc = _svc()
    if project:
        result = svc.project(project).uninstall_package(
            package_id, force_remove=force, remove_dependencies=remove_dependencies,
        )
        empty = f"{package_id} 仍被依赖，已降级为依赖引用"
    else:
        result = svc.package_manager.uninstall_package(
            package_id, version, force_remove=force, remove_dependencies=remove_dependencies,
        )
        empty = f"无需卸载: {package_id}"
    _echo_plan(result, empty)


@click.command()
@click.argument("package_id")
@click.option("--version", default=None, help="更新到指定版本")
@click.option("--safe", is_flag=True, help="只在同一 major.minor 内更新")
@click.option("--no-deps", "no_deps", is_flag=True, help="不更新依赖")
@click.option("--prerelease", is_flag=True, help="允许预发布版本")
@_project_option
@handle_errors
def update(
    package_id: str, version: str | None, safe: bool, no_deps: bool,
    prerelease: bool, project: str | None,
) -> None:
    """更新已安装的包"""
    svc = _svc()
    target = svc.project(project) if project else svc.package_manager
    result = target.update_package(
        package_id,
        version=version,
        safe=safe,
        update_dependencies=not no_deps,
        allow_prerelease=prerelease or svc.config.allow_prerelease,
    )
    _echo_plan(result, f"没有可用更新: {package_id}")


@click.command()
@click.argument("package_id")
@click.option("--version", default=None, help="指定版本")
@click.option("--ignore-dependencies", is_flag=True, help="不解析依赖")
@click.option("--prerelease", is_flag=True, help="允许预发布版本")
@handle_errors
def plan(package_id: str, version: str | None, ignore_dependencies: bool, prerelease: bool) -> None:
    """只解析安装计划，不修改本地存储"""
    pm = _svc().package_manager
    with pm.source_repository.start_operation("plan", package_id):
        package = pm.resolve_package(package_id, version, allow_prerelease=prerelease)
        result = pm.plan_install(
            package, ignore_dependencies=ignore_dependencies, allow_prerelease=prerelease,
        )
    _echo_plan(result, f"无需操作: {package.identity} 已安装")


@click.command(name="list")
@_project_option
@handle_errors
def list_packages(project: str | None) -> None:
    """列出已安装的包"""
    svc = _svc()
    if project:
        refs = svc.project(project).get_references()
        if not refs:
            click.echo("项目没有引用任何包。")
            return
        for ref in sorted(refs, key=lambda r: r.identity):
            kind = "" if ref.is_direct else "  (依赖)"
            click.echo(f"  {ref.id:30s} {str(ref.version):14s}{kind}")
        return

    packages = svc.package_manager.list_installed()
    if not packages:
        click.echo("本地存储中没有已安装的包。")
        return
    for p in packages:
        click.echo(f"  {p.id:30s} {str(p.version):14s} {p.description}")


@click.command()
@click.option("--prerelease", is_flag=True, help="包含预发布版本")
@click.option("--all-versions", is_flag=True, help="列出所有更新的版本而不只是最新版")
@handle_errors
def updates(prerelease: bool, all_versions: bool) -> None:
    """列出已安装包的可用更新"""
    svc = _svc()
    found = svc.package_manager.get_updates(
        include_prerelease=prerelease, include_all_versions=all_versions,
    )
    if not found:
        click.echo("所有包均为最新。")
        return
    for p in found:
        click.echo(f"  {p.id:30s} {p.version}")
