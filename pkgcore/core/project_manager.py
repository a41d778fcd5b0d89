"""项目管理器 — 把包的安装 / 卸载绑定到单个项目的引用集合

每个项目的引用集合持久化在自己的 packages.config 中，条目区分
直接引用（用户显式安装）与传递引用（仅因依赖而存在）。

状态迁移:
  未引用 -> 直接引用 / 传递引用       安装
  传递引用 -> 直接引用                显式安装已作为依赖存在的包
  直接引用 -> 传递引用                显式卸载仍被依赖的包（不移除依赖时）
  引用 -> 未引用                      卸载

包内容只在作用域（ProjectScope）内没有任何项目引用时才从本地存储物理删除，
引用计数由项目管理器负责，PackageManager 不感知项目。
作用域可经存储根目录下的 repositories.config 持久化，跨进程生效。
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from pkgcore.core.events import EventDispatcher, PackageEvent
from pkgcore.core.exceptions import PackageInUseError, PackageNotInstalledError
from pkgcore.core.models import InstallPlan, Package, PackageAction, PackageIdentity
from pkgcore.core.package_manager import PackageManager, as_version
from pkgcore.core.protocols import PackageEventListener
from pkgcore.core.reference_file import PackageReference, PackageReferenceFile, ProjectRegistry
from pkgcore.core.repo.memory import InMemoryRepository
from pkgcore.core.version import SemanticVersion
from pkgcore.core.walker import UninstallWalker, resolve_install_plan

logger = logging.getLogger(__name__)


class ProjectScope:
    """共享同一本地存储的一组项目，负责跨项目的引用计数

    传入 registry 时，引用计数还会读取登记表中其他进程登记过的项目，
    未在本进程中构造的项目同样能阻止包内容被物理删除。
    """

    def __init__(self, registry: ProjectRegistry | None = None) -> None:
        self.registry = registry
        self._projects: list[ProjectManager] = []
        self._lock = threading.Lock()

    def register(self, project: ProjectManager) -> None:
        with self._lock:
            if project not in self._projects:
                self._projects.append(project)

    def track(self, project: ProjectManager) -> None:
        """把项目的引用文件写入登记表"""
        if self.registry is not None:
            self.registry.register(project.reference_file.path)

    @property
    def projects(self) -> list[ProjectManager]:
        with self._lock:
            return list(self._projects)

    def reference_files(self) -> list[PackageReferenceFile]:
        files = {p.reference_file.path.resolve(): p.reference_file for p in self.projects}
        if self.registry is not None:
            for path in self.registry.reference_files():
                files.setdefault(path, PackageReferenceFile(path))
        return list(files.values())

    def reference_count(self, identity: PackageIdentity) -> int:
        return sum(
            1 for ref_file in self.reference_files()
            if any(r.identity == identity for r in ref_file.get_references())
        )


class ProjectManager:
    """单个项目的包引用管理"""

    def __init__(
        self,
        name: str,
        reference_file: PackageReferenceFile,
        package_manager: PackageManager,
        *,
        scope: ProjectScope | None = None,
        listeners: Iterable[PackageEventListener] = (),
        target_framework: str | None = None,
    ) -> None:
        self.name = name
        self.reference_file = reference_file
        self.package_manager = package_manager
        self.events = EventDispatcher(listeners)
        self.target_framework = target_framework or package_manager.target_framework
        self.scope = scope or ProjectScope()
        self.scope.register(self)

    # ---- 引用集合 ----

    def get_references(self) -> list[PackageReference]:
        return self.reference_file.get_references()

    def get_reference(self, package_id: str) -> PackageReference | None:
        key = package_id.lower()
        for ref in self.get_references():
            if ref.identity.key == key:
                return ref
        return None

    def is_referenced(self, package_id: str, version: SemanticVersion | None = None) -> bool:
        ref = self.get_reference(package_id)
        return ref is not None and (version is None or ref.version == version)

    def _package_for(self, identity: PackageIdentity) -> Package | None:
        pm = self.package_manager
        return (
            pm.local_repository.find_package_by_version(identity.id, identity.version)
            or pm.source_repository.find_package_by_version(identity.id, identity.version)
        )

    def add_reference(self, package: Package, is_direct: bool = True) -> PackageReference:
        """记录引用并持久化，同时把本项目写入存储的项目登记表

        新增或版本变化时，写入前触发 REFERENCE_ADDING，写入后触发 REFERENCE_ADDED。
        已有的直接引用不会被降级为传递引用。
        """
        existing = self.get_reference(package.id)
        if existing is not None and existing.is_direct:
            is_direct = True
        ref = PackageReference(package.identity, self.target_framework, is_direct)
        if existing == ref:
            return ref

        is_new = existing is None or existing.identity != ref.identity
        path = self.package_manager.local_repository.install_path(package)
        if is_new:
            self.events.emit(PackageEvent.REFERENCE_ADDING, package, path, project=self.name)
        self.reference_file.add_entry(ref)
        self.scope.track(self)
        if is_new:
            self.events.emit(PackageEvent.REFERENCE_ADDED, package, path, project=self.name)
            logger.info(
                "项目 %s 添加引用: %s%s", self.name, package.identity,
                "" if is_direct else " (依赖)",
                extra={"project": self.name, "package": package.id},
            )
        return ref

    def remove_reference(self, package: Package) -> bool:
        """删除引用；REFERENCE_REMOVING 在任何删除动作之前触发"""
        if self.get_reference(package.id) is None:
            return False
        path = self.package_manager.local_repository.install_path(package)
        self.events.emit(PackageEvent.REFERENCE_REMOVING, package, path, project=self.name)
        self.reference_file.delete_entry(package.id)
        self.events.emit(PackageEvent.REFERENCE_REMOVED, package, path, project=self.name)
        logger.info(
            "项目 %s 移除引用: %s", self.name, package.identity,
            extra={"project": self.name, "package": package.id},
        )
        return True

    # ---- 安装 ----

    def _plan_install(
        self, package: Package, *, ignore_dependencies: bool, allow_prerelease: bool,
    ) -> InstallPlan:
        pm = self.package_manager
        return resolve_install_plan(
            package,
            pm.source_repository,
            [r.identity for r in self.get_references()],
            ignore_dependencies=ignore_dependencies,
            dependency_version=pm.dependency_version,
            allow_prerelease=allow_prerelease,
            target_framework=self.target_framework,
            local_repository=pm.local_repository,
        )

    def _execute(self, plan: InstallPlan, direct_ids: set[str]) -> None:
        # 替换版本时保留原引用的直接 / 传递属性
        direct = set(direct_ids) | {r.identity.key for r in self.get_references() if r.is_direct}
        for op in plan:
            if op.action is PackageAction.UNINSTALL:
                self._release(op.package)
            else:
                self.package_manager.extract_to_store(op.package)
                self.add_reference(op.package, is_direct=op.package.id.lower() in direct)

    def install_package(
        self,
        package_id: str,
        version: SemanticVersion | str | None = None,
        *,
        ignore_dependencies: bool = False,
        allow_prerelease: bool = False,
    ) -> InstallPlan:
        """安装包到项目；已作为依赖存在的包会被提升为直接引用"""
        pm = self.package_manager
        version = as_version(version)
        if version is not None and version.is_prerelease:
            allow_prerelease = True
        with pm.source_repository.start_operation("install", package_id):
            package = pm.resolve_package(package_id, version, allow_prerelease)
            plan = self._plan_install(
                package,
                ignore_dependencies=ignore_dependencies,
                allow_prerelease=allow_prerelease or package.is_prerelease,
            )
            self._execute(plan, {package.id.lower()})
            # 计划为空时（已作为依赖引用）仍需提升为直接引用
            self.add_reference(package, is_direct=True)
        return plan

    # ---- 卸载 ----

    def _release(self, package: Package) -> None:
        """移除本项目的引用，作用域内无人引用时物理删除"""
        self.remove_reference(package)
        if self.scope.reference_count(package.identity) == 0:
            self.package_manager.remove_from_store(package)
        else:
            logger.info("%s 仍被其他项目引用，保留包内容", package.identity)

    def uninstall_package(
        self,
        package_id: str,
        *,
        force_remove: bool = False,
        remove_dependencies: bool = False,
    ) -> InstallPlan:
        """从项目卸载包

        直接引用仍被其他包依赖且不移除依赖时，降级为传递引用并返回空计划。

        异常:
            PackageNotInstalledError: 项目未引用该包
            PackageInUseError: 传递引用仍被依赖，或要求同时移除依赖
        """
        ref = self.get_reference(package_id)
        if ref is None:
            raise PackageNotInstalledError(f"项目 {self.name} 未引用包: {package_id}")
        package = self._package_for(ref.identity)
        if package is None:
            raise PackageNotInstalledError(f"找不到已引用包的元数据: {ref.identity}")

        scope_packages = []
        for other in self.get_references():
            found = self._package_for(other.identity)
            if found is None:
                logger.warning("项目 %s 引用的包元数据不可用，忽略: %s", self.name, other.identity)
                continue
            scope_packages.append(found)

        walker = UninstallWalker(
            InMemoryRepository(scope_packages, name=self.name),
            force_remove=force_remove,
            remove_dependencies=remove_dependencies,
            target_framework=self.target_framework,
            keep=[r.id for r in self.get_references() if r.is_direct and r.identity.key != ref.identity.key],
        )
        try:
            plan = walker.resolve(package)
        except PackageInUseError as e:
            if not ref.is_direct or remove_dependencies:
                raise
            self.reference_file.add_entry(
                PackageReference(ref.identity, ref.target_framework, is_direct=False),
            )
            logger.warning(
                "%s 仍被 %s 依赖，已降级为依赖引用", ref.identity, ", ".join(e.dependents),
                extra={"project": self.name, "package": ref.id},
            )
            return InstallPlan()

        for op in plan:
            self._release(op.package)
        return plan

    # ---- 更新 ----

    def update_package(
        self,
        package_id: str,
        *,
        version: SemanticVersion | str | None = None,
        safe: bool = False,
        update_dependencies: bool = True,
        allow_prerelease: bool = False,
    ) -> InstallPlan | None:
        """把项目引用的包更新到新版本，没有可用更新时返回 None"""
        ref = self.get_reference(package_id)
        if ref is None:
            raise PackageNotInstalledError(f"项目 {self.name} 未引用包: {package_id}")
        installed = self._package_for(ref.identity)
        if installed is None:
            raise PackageNotInstalledError(f"找不到已引用包的元数据: {ref.identity}")

        pm = self.package_manager
        repo = pm.update_repository or pm.source_repository
        with repo.start_operation("update", package_id):
            target = pm.find_update(
                installed, version=version, safe=safe, allow_prerelease=allow_prerelease,
            )
            if target is None or target.version == installed.version:
                logger.info("没有可用更新: %s", installed.identity)
                return None
            plan = self._plan_install(
                target,
                ignore_dependencies=not update_dependencies,
                allow_prerelease=allow_prerelease or target.is_prerelease,
            )
            self._execute(plan, {target.id.lower()} if ref.is_direct else set())
        return plan
