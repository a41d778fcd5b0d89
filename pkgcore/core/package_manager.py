"""包管理器 — 本地存储上的安装 / 卸载 / 更新

先解析后执行: 遍历器在任何修改之前完成全部依赖检查，
解析失败时本地存储保持不变。执行阶段的错误只影响当前正在写入的包，
之前已成功写入的包不会回滚。

同一 (id, version) 的写入 / 删除通过 KeyedLock 串行；
重复安装已存在的包是无操作。
"""

from __future__ import annotations

import logging
from typing import Iterable

from pkgcore.core.events import EventDispatcher, PackageEvent
from pkgcore.core.exceptions import (
    AmbiguousPackageError,
    PackageNotFoundError,
    PackageNotInstalledError,
)
from pkgcore.core.locks import KeyedLock
from pkgcore.core.models import InstallPlan, Package, PackageAction, PackageIdentity
from pkgcore.core.protocols import PackageEventListener, PackageRepository
from pkgcore.core.repo.local import LocalPackageRepository
from pkgcore.core.version import SemanticVersion, VersionSpec
from pkgcore.core.walker import (
    DependencyVersion,
    resolve_install_plan,
    resolve_uninstall_plan,
)

logger = logging.getLogger(__name__)


def as_version(version: SemanticVersion | str | None) -> SemanticVersion | None:
    if version is None or isinstance(version, SemanticVersion):
        return version
    return SemanticVersion.parse(version)


class PackageManager:
    """包管理器

    参数:
        source_repository: 安装时的包源（通常是聚合仓库）
        local_repository: 本地包存储
        listeners: 生命周期事件订阅者
        dependency_version: 依赖版本选择策略
        target_framework: 依赖分组选择所用的目标框架
        update_repository: 更新时查找新版本的包源，None 表示与 source_repository 相同
        locks: 多个管理器共享同一存储时传入同一个 KeyedLock
    """

    def __init__(
        self,
        source_repository: PackageRepository,
        local_repository: LocalPackageRepository,
        *,
        listeners: Iterable[PackageEventListener] = (),
        dependency_version: DependencyVersion | str = DependencyVersion.HIGHEST,
        target_framework: str | None = None,
        update_repository: PackageRepository | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.source_repository = source_repository
        self.local_repository = local_repository
        self.events = EventDispatcher(listeners)
        self.dependency_version = DependencyVersion.parse(dependency_version)
        self.target_framework = target_framework
        self.update_repository = update_repository
        self.locks = locks or KeyedLock()

    # ---- 查询 ----

    def installed_identities(self) -> list[PackageIdentity]:
        return [p.identity for p in self.local_repository.get_packages()]

    def list_installed(self) -> list[Package]:
        return sorted(self.local_repository.get_packages(), key=lambda p: p.identity)

    def is_installed(self, package_id: str, version: SemanticVersion) -> bool:
        return self.local_repository.exists(package_id, version)

    def resolve_package(
        self,
        package_id: str,
        version: SemanticVersion | str | None = None,
        allow_prerelease: bool = False,
    ) -> Package:
        """定位要安装的顶层包: 指定版本时精确查找（本地优先），否则取最新

        异常:
            PackageNotFoundError: 所有源中都不存在
        """
        version = as_version(version)
        if version is not None:
            package = (
                self.local_repository.find_package_by_version(package_id, version)
                or self.source_repository.find_package_by_version(package_id, version)
            )
        else:
            package = self.source_repository.find_package(package_id, None, allow_prerelease)
        if package is None:
            wanted = f"{package_id} {version}" if version else package_id
            raise PackageNotFoundError(f"找不到包: {wanted}")
        return package

    def find_installed(
        self, package_id: str, version: SemanticVersion | str | None = None,
    ) -> Package:
        version = as_version(version)
        if version is not None:
            package = self.local_repository.find_package_by_version(package_id, version)
            if package is None:
                raise PackageNotInstalledError(f"包未安装: {package_id} {version}")
            return package
        installed = self.local_repository.find_packages_by_id(package_id)
        if not installed:
            raise PackageNotInstalledError(f"包未安装: {package_id}")
        if len(installed) > 1:
            versions = ", ".join(str(p.version) for p in sorted(installed, key=lambda p: p.version))
            raise AmbiguousPackageError(
                f"本地安装了 {package_id} 的多个版本 ({versions})，请指定版本"
            )
        return installed[0]

    # ---- 安装 ----

    def plan_install(
        self,
        package: Package,
        *,
        ignore_dependencies: bool = False,
        allow_prerelease: bool = False,
        allow_side_by_side: bool | None = None,
    ) -> InstallPlan:
        """解析安装计划，不修改本地存储

        allow_side_by_side 为 None 时跟随本地存储的并排模式；更新操作传 False，
        使旧版本在计划中被卸载。
        """
        if allow_side_by_side is None:
            allow_side_by_side = self.local_repository.path_resolver.use_side_by_side
        return resolve_install_plan(
            package,
            self.source_repository,
            self.installed_identities(),
            ignore_dependencies=ignore_dependencies,
            dependency_version=self.dependency_version,
            allow_prerelease=allow_prerelease,
            target_framework=self.target_framework,
            local_repository=self.local_repository,
            allow_side_by_side=allow_side_by_side,
        )

    def install_package(
        self,
        package_id: str,
        version: SemanticVersion | str | None = None,
        *,
        ignore_dependencies: bool = False,
        allow_prerelease: bool = False,
    ) -> InstallPlan:
        """安装包及其依赖，返回已执行的计划

        指定的版本是预发布版本时，本次操作自动允许预发布依赖。
        """
        version = as_version(version)
        if version is not None and version.is_prerelease:
            allow_prerelease = True
        with self.source_repository.start_operation("install", package_id):
            package = self.resolve_package(package_id, version, allow_prerelease)
            plan = self.plan_install(
                package,
                ignore_dependencies=ignore_dependencies,
                allow_prerelease=allow_prerelease,
            )
            self.execute(plan)
        return plan

    def install(
        self,
        package: Package,
        *,
        ignore_dependencies: bool = False,
        allow_prerelease: bool = False,
    ) -> InstallPlan:
        plan = self.plan_install(
            package,
            ignore_dependencies=ignore_dependencies,
            allow_prerelease=allow_prerelease or package.is_prerelease,
        )
        self.execute(plan)
        return plan

    # ---- 执行 ----

    def execute(self, plan: InstallPlan) -> None:
        """按计划顺序执行；某个包失败时异常直接向上传播，后续操作不再执行"""
        for op in plan:
            if op.action is PackageAction.UNINSTALL:
                self.remove_from_store(op.package)
            else:
                self.extract_to_store(op.package)

    def extract_to_store(self, package: Package) -> bool:
        """写入本地存储，已存在时返回 False"""
        identity = package.identity
        with self.locks.hold(identity):
            if self.local_repository.exists(package.id, package.version):
                logger.debug("已存在，跳过: %s", identity)
                return False
            path = self.local_repository.install_path(package)
            self.events.emit(PackageEvent.INSTALLING, package, path)
            self.local_repository.add_package(package)
            self.events.emit(PackageEvent.INSTALLED, package, path)
        logger.info("已安装: %s", identity, extra={"package": package.id, "version": package.version})
        return True

    def remove_from_store(self, package: Package) -> bool:
        """从本地存储删除，不存在时返回 False"""
        identity = package.identity
        with self.locks.hold(identity):
            if not self.local_repository.exists(package.id, package.version):
                logger.debug("本地不存在，跳过删除: %s", identity)
                return False
            path = self.local_repository.install_path(package)
            self.events.emit(PackageEvent.UNINSTALLING, package, path)
            self.local_repository.remove_package(package)
            self.events.emit(PackageEvent.UNINSTALLED, package, path)
        logger.info("已卸载: %s", identity, extra={"package": package.id, "version": package.version})
        return True

    # ---- 卸载 ----

    def uninstall_package(
        self,
        package_id: str,
        version: SemanticVersion | str | None = None,
        *,
        force_remove: bool = False,
        remove_dependencies: bool = False,
    ) -> InstallPlan:
        """卸载包，返回已执行的计划

        异常:
            PackageNotInstalledError: 包不在本地存储中
            PackageInUseError: 非强制模式下仍被其他包依赖，本地存储不变
        """
        package = self.find_installed(package_id, version)
        plan = resolve_uninstall_plan(
            package,
            self.local_repository,
            force_remove=force_remove,
            remove_dependencies=remove_dependencies,
            target_framework=self.target_framework,
        )
        self.execute(plan)
        return plan

    # ---- 更新 ----

    def find_update(
        self,
        installed: Package,
        *,
        version: SemanticVersion | str | None = None,
        safe: bool = False,
        allow_prerelease: bool = False,
    ) -> Package | None:
        """确定更新目标；没有比已安装版本更新的版本时返回 None

        safe 时限定在安全范围 [installed, major.(minor+1)) 内。
        """
        repo = self.update_repository or self.source_repository
        version = as_version(version)
        if version is not None:
            target = repo.find_package_by_version(installed.id, version)
            if target is None:
                raise PackageNotFoundError(f"找不到包: {installed.id} {version}")
            return target

        spec = VersionSpec.get_safe_range(installed.version) if safe else None
        target = repo.find_package(
            installed.id, spec, allow_prerelease or installed.is_prerelease,
        )
        if target is None or target.version <= installed.version:
            return None
        return target

    def update_package(
        self,
        package_id: str,
        *,
        version: SemanticVersion | str | None = None,
        safe: bool = False,
        update_dependencies: bool = True,
        allow_prerelease: bool = False,
    ) -> InstallPlan | None:
        """把已安装的包替换为新版本，没有可用更新时返回 None

        新版本与其他已安装包不兼容时整体失败，本地存储不变。
        """
        installed = max(
            self.local_repository.find_packages_by_id(package_id),
            key=lambda p: p.version,
            default=None,
        )
        if installed is None:
            raise PackageNotInstalledError(f"包未安装: {package_id}")

        repo = self.update_repository or self.source_repository
        with repo.start_operation("update", package_id):
            target = self.find_update(
                installed, version=version, safe=safe, allow_prerelease=allow_prerelease,
            )
            if target is None:
                logger.info("没有可用更新: %s", installed.identity)
                return None
            if target.version == installed.version:
                logger.info("已是指定版本: %s", installed.identity)
                return None

            logger.info("更新 %s -> %s", installed.identity, target.version)
            plan = self.plan_install(
                target,
                ignore_dependencies=not update_dependencies,
                allow_side_by_side=False,
                allow_prerelease=allow_prerelease or target.is_prerelease,
            )
            self.execute(plan)
        return plan

    def safe_update_package(
        self,
        package_id: str,
        *,
        update_dependencies: bool = True,
        allow_prerelease: bool = False,
    ) -> InstallPlan | None:
        return self.update_package(
            package_id,
            safe=True,
            update_dependencies=update_dependencies,
            allow_prerelease=allow_prerelease,
        )

    def get_updates(
        self, include_prerelease: bool = False, include_all_versions: bool = False,
    ) -> list[Package]:
        repo = self.update_repository or self.source_repository
        with repo.start_operation("updates"):
            return repo.get_updates(
                self.installed_identities(),
                include_prerelease=include_prerelease,
                include_all_versions=include_all_versions,
            )
