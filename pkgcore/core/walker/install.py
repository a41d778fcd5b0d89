"""安装遍历器 — 由目标包计算有序安装计划

深度优先遍历依赖图:
  1. visiting 记录当前 DFS 栈，再次遇到栈内 id 即为循环依赖
  2. 同一 id 再次出现时，已选版本满足新约束则复用（菱形依赖）
  3. 不满足时按版本策略处理: lowest 直接失败；其余策略在策略窗口内
     寻找同时满足全部约束的版本，钉住后从根重新遍历
  4. 后序追加到 resolved，保证依赖总在依赖方之前

已安装的包满足约束时优先复用；必须换版本时在计划开头生成卸载旧版本的操作，
前提是所有已安装的依赖方仍接受新版本且不是降级。allow_side_by_side 时
新旧版本并存，不生成卸载操作。
所有检查都在返回计划之前完成，失败时不会产生任何修改。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, NoReturn

from pkgcore.core.exceptions import (
    CircularDependencyError,
    DependencyResolutionError,
    PackageNotFoundError,
)
from pkgcore.core.models import (
    InstallPlan,
    Package,
    PackageAction,
    PackageDependency,
    PackageIdentity,
    PackageOperation,
)
from pkgcore.core.protocols import PackageRepository
from pkgcore.core.version import SemanticVersion, VersionSpec

logger = logging.getLogger(__name__)

# 单次解析中因版本冲突重新遍历的次数上限
MAX_RESOLVE_PASSES = 32


class DependencyVersion(str, Enum):
    """依赖版本选择策略"""

    LOWEST = "lowest"
    HIGHEST_PATCH = "highest_patch"
    HIGHEST_MINOR = "highest_minor"
    HIGHEST = "highest"

    @classmethod
    def parse(cls, value: str | DependencyVersion) -> DependencyVersion:
        if isinstance(value, DependencyVersion):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        normalized = {"highestpatch": "highest_patch", "highestminor": "highest_minor"}.get(
            normalized, normalized,
        )
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"未知的依赖版本策略: '{value}'，可选: {[m.value for m in cls]}"
            ) from None

    def within_window(self, current: SemanticVersion, candidate: SemanticVersion) -> bool:
        """candidate 是否处于以 current 为基准的策略窗口内"""
        if self is DependencyVersion.HIGHEST_PATCH:
            return candidate.version[:2] == current.version[:2]
        if self is DependencyVersion.HIGHEST_MINOR:
            return candidate.major == current.major
        return self is DependencyVersion.HIGHEST


def select_candidate(
    candidates: list[Package], policy: DependencyVersion,
) -> Package | None:
    """从按版本降序排列的候选中按策略选出一个

    lowest: 最低版本
    highest_patch: 最低 major.minor 中 patch 最高者
    highest_minor: 最低 major 中 minor.patch 最高者
    highest: 最高版本
    """
    if not candidates:
        return None
    if policy is DependencyVersion.HIGHEST:
        return candidates[0]
    lowest = candidates[-1]
    if policy is DependencyVersion.LOWEST:
        return lowest
    width = 2 if policy is DependencyVersion.HIGHEST_PATCH else 1
    for candidate in candidates:
        if candidate.version.version[:width] == lowest.version.version[:width]:
            return candidate
    return lowest


@dataclass
class _Constraint:
    spec: VersionSpec | None
    requester: str


class _Restart(Exception):
    """内部信号: 钉住了新版本，需要从根重新遍历"""


class InstallWalker:
    """安装遍历器，一个实例对应一次解析"""

    def __init__(
        self,
        repository: PackageRepository,
        installed: Iterable[PackageIdentity] = (),
        *,
        local_repository: PackageRepository | None = None,
        ignore_dependencies: bool = False,
        dependency_version: DependencyVersion = DependencyVersion.HIGHEST,
        allow_prerelease: bool = False,
        target_framework: str | None = None,
        allow_side_by_side: bool = False,
    ) -> None:
        self.repository = repository
        self.local_repository = local_repository
        self.ignore_dependencies = ignore_dependencies
        self.dependency_version = DependencyVersion.parse(dependency_version)
        self.allow_prerelease = allow_prerelease
        self.target_framework = target_framework
        self.allow_side_by_side = allow_side_by_side

        self.installed: set[PackageIdentity] = set(installed)
        self._installed_by_id: dict[str, list[Package]] = {}
        for identity in sorted(self.installed, reverse=True):
            package = self._lookup(identity)
            if package is not None:
                # 同 id 多版本并存时按版本从高到低排列
                self._installed_by_id.setdefault(identity.key, []).append(package)

        self._target_key = ""
        self._pins: dict[str, Package] = {}
        self._constraints: dict[str, list[_Constraint]] = {}

        # 单次遍历的状态，由 _reset_pass 初始化
        self._visiting: list[Package] = []
        self._chosen: dict[str, Package] = {}
        self.resolved: list[Package] = []
        self._replacements: dict[str, Package] = {}

    # ---- 查询辅助 ----

    def _lookup(self, identity: PackageIdentity) -> Package | None:
        for repo in (self.local_repository, self.repository):
            if repo is None:
                continue
            package = repo.find_package_by_version(identity.id, identity.version)
            if package is not None:
                return package
        logger.debug("已安装包的元数据不可用，跳过其依赖检查: %s", identity)
        return None

    def _allow_prerelease(self, spec: VersionSpec | None) -> bool:
        if self.allow_prerelease:
            return True
        return bool(spec and spec.is_exact and spec.min_version.is_prerelease)  # type: ignore[union-attr]

    def _path(self, tail: str | None = None) -> str:
        parts = [p.identity.full_name for p in self._visiting]
        if tail:
            parts.append(tail)
        return " => ".join(parts)

    # ---- 遍历 ----

    def _reset_pass(self) -> None:
        self._visiting = []
        self._chosen = {}
        self.resolved = []
        self._replacements = {}

    def resolve(self, target: Package) -> InstallPlan:
        """解析目标包，返回有序安装计划

        异常:
            CircularDependencyError: 依赖图中存在环
            DependencyResolutionError: 某个依赖无法满足
        """
        self._target_key = target.id.lower()
        for attempt in range(1, MAX_RESOLVE_PASSES + 1):
            self._reset_pass()
            try:
                self._walk_root(target)
            except _Restart:
                logger.debug("版本冲突已调和，第 %d 次重新遍历", attempt)
                continue
            self._check_replacements()
            return self._build_plan()
        raise DependencyResolutionError(
            f"解析 {target.identity} 时版本冲突无法收敛"
        )

    def _walk_root(self, target: Package) -> None:
        versions = self._installed_by_id.get(self._target_key)
        installed = versions[0] if versions else None
        if (
            installed is not None
            and installed.version != target.version
            and not self.allow_side_by_side
        ):
            self._replacements[self._target_key] = installed
        self._chosen[self._target_key] = target
        self._walk(target)

    def _walk(self, package: Package) -> None:
        self._visiting.append(package)
        if not self.ignore_dependencies:
            for dep in package.dependencies_for(self.target_framework):
                self._visit_dependency(package, dep)
        self._visiting.pop()
        self.resolved.append(package)

    def _visit_dependency(self, parent: Package, dep: PackageDependency) -> None:
        key = dep.id.lower()

        for idx, ancestor in enumerate(self._visiting):
            if ancestor.id.lower() == key:
                cycle = [p.id for p in self._visiting[idx:]] + [dep.id]
                raise CircularDependencyError(cycle)

        # 约束跨遍历累积，重新遍历时同一来源不重复记录
        constraint = _Constraint(dep.version_spec, parent.identity.full_name)
        known = self._constraints.setdefault(key, [])
        if constraint not in known:
            known.append(constraint)

        chosen = self._chosen.get(key)
        if chosen is not None:
            if dep.version_spec is None or dep.version_spec.satisfies(chosen.version):
                return
            self._reconcile(dep, chosen)

        candidate = self._select(dep)
        self._chosen[key] = candidate
        self._walk(candidate)

    def _select(self, dep: PackageDependency) -> Package:
        key = dep.id.lower()
        spec = dep.version_spec
        installed_versions = self._installed_by_id.get(key, [])

        candidate = self._pins.get(key)
        if candidate is not None:
            if spec is not None and not spec.satisfies(candidate.version):
                self._reconcile(dep, candidate)
        else:
            for installed in installed_versions:
                if spec is None or spec.satisfies(installed.version):
                    return installed
            allow = self._allow_prerelease(spec)
            if spec is None:
                candidate = self.repository.find_package(dep.id, None, allow)
            else:
                candidate = select_candidate(
                    self.repository.find_packages(dep.id, spec, allow),
                    self.dependency_version,
                )
            if candidate is None:
                raise DependencyResolutionError(
                    f"无法解析依赖 '{dep}': {self._path(str(dep))}",
                    chain=[p.identity.full_name for p in self._visiting] + [str(dep)],
                )

        latest = installed_versions[0] if installed_versions else None
        if (
            latest is not None
            and candidate.version != latest.version
            and not self.allow_side_by_side
        ):
            if candidate.version < latest.version:
                raise DependencyResolutionError(
                    f"已引用更高版本 {latest.identity}，"
                    f"不能降级以满足 '{dep}': {self._path(str(dep))}",
                    chain=[p.identity.full_name for p in self._visiting] + [str(dep)],
                )
            self._replacements[key] = latest
        return candidate

    def _reconcile(self, dep: PackageDependency, current: Package) -> NoReturn:
        """已选版本与新约束冲突: 按策略寻找满足全部约束的版本并重新遍历"""
        key = dep.id.lower()
        requesters = ", ".join(
            f"{c.requester} -> {c.spec.pretty() if c.spec else '(any)'}"
            for c in self._constraints.get(key, [])
        )
        conflict = DependencyResolutionError(
            f"依赖版本冲突: 已选择 {current.identity}，无法满足 '{dep}' "
            f"({self._path(str(dep))}); 约束来源: {requesters}",
            chain=[p.identity.full_name for p in self._visiting] + [str(dep)],
        )
        if self.dependency_version is DependencyVersion.LOWEST or key == self._target_key:
            raise conflict

        specs = [c.spec for c in self._constraints.get(key, []) if c.spec is not None]
        allow = self.allow_prerelease or any(self._allow_prerelease(s) for s in specs)
        candidates = [
            p for p in self.repository.find_packages(dep.id, None, allow)
            if all(s.satisfies(p.version) for s in specs)
            and self.dependency_version.within_window(current.version, p.version)
        ]
        if not candidates or self._pins.get(key) == candidates[0]:
            raise conflict

        logger.info(
            "依赖版本调和: %s %s -> %s", dep.id, current.version, candidates[0].version,
        )
        self._pins[key] = candidates[0]
        raise _Restart()

    # ---- 收尾 ----

    def _check_replacements(self) -> None:
        """被替换版本的已安装依赖方必须仍接受新版本"""
        for key, old in self._replacements.items():
            new = self._chosen[key]
            for versions in self._installed_by_id.values():
                for dependent in versions:
                    dependent_key = dependent.id.lower()
                    if dependent_key in self._replacements or dependent_key == key:
                        continue
                    dep = dependent.find_dependency(old.id, self.target_framework)
                    if dep is None or dep.version_spec is None:
                        continue
                    if not dep.version_spec.satisfies(new.version):
                        raise DependencyResolutionError(
                            f"将 {old.identity} 更新为 {new.version} 失败: "
                            f"已安装的 {dependent.identity} 要求 '{dep}'",
                            chain=[dependent.identity.full_name, str(dep)],
                        )

    def _build_plan(self) -> InstallPlan:
        ops = [
            PackageOperation(PackageAction.UNINSTALL, old)
            for old in self._replacements.values()
        ]
        ops += [
            PackageOperation(PackageAction.INSTALL, p)
            for p in self.resolved
            if p.identity not in self.installed
        ]
        return InstallPlan(ops)


def resolve_install_plan(
    target: Package | PackageIdentity,
    repository: PackageRepository,
    installed: Iterable[PackageIdentity] = (),
    *,
    ignore_dependencies: bool = False,
    dependency_version: DependencyVersion = DependencyVersion.HIGHEST,
    allow_prerelease: bool = False,
    target_framework: str | None = None,
    local_repository: PackageRepository | None = None,
    allow_side_by_side: bool = False,
) -> InstallPlan:
    """计算目标包的安装计划

    target 为标识时先在仓库中精确查找，找不到抛出 PackageNotFoundError。
    """
    if isinstance(target, PackageIdentity):
        package = repository.find_package_by_version(target.id, target.version)
        if package is None and local_repository is not None:
            package = local_repository.find_package_by_version(target.id, target.version)
        if package is None:
            raise PackageNotFoundError(f"找不到包: {target}")
        target = package

    walker = InstallWalker(
        repository,
        installed,
        local_repository=local_repository,
        ignore_dependencies=ignore_dependencies,
        dependency_version=dependency_version,
        allow_prerelease=allow_prerelease or target.is_prerelease,
        target_framework=target_framework,
        allow_side_by_side=allow_side_by_side,
    )
    return walker.resolve(target)
