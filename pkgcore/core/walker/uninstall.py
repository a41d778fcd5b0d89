"""卸载遍历器 — 计算卸载计划

- 目标包仍被其他包依赖时，非强制模式抛出 PackageInUseError，强制模式记录告警
- remove_dependencies 时，把因此变成孤立（入度为零）的依赖一并卸载，
  按最小集约简反复求不动点，直到没有新的孤立依赖
- keep 中的 id（如项目的直接引用）永远不会作为孤立依赖被卸载
- 计划顺序为依赖方在前、依赖在后
"""

from __future__ import annotations

import logging
from typing import Iterable

from pkgcore.core.exceptions import PackageInUseError
from pkgcore.core.models import InstallPlan, Package, PackageAction, PackageIdentity, PackageOperation
from pkgcore.core.protocols import PackageRepository

logger = logging.getLogger(__name__)


class DependencyGraph:
    """包集合内部的依赖边

    每条依赖声明连到集合中满足约束的最高版本；集合中找不到的依赖记为未解析。
    """

    def __init__(self, packages: Iterable[Package], target_framework: str | None = None) -> None:
        self.packages: dict[PackageIdentity, Package] = {}
        by_id: dict[str, list[Package]] = {}
        for p in packages:
            self.packages[p.identity] = p
            by_id.setdefault(p.id.lower(), []).append(p)
        for versions in by_id.values():
            versions.sort(key=lambda p: p.version, reverse=True)

        self._dependencies: dict[PackageIdentity, list[Package]] = {i: [] for i in self.packages}
        self._dependents: dict[PackageIdentity, list[Package]] = {i: [] for i in self.packages}
        self.unresolved: dict[PackageIdentity, list[str]] = {}

        for p in self.packages.values():
            for dep in p.dependencies_for(target_framework):
                match = next(
                    (q for q in by_id.get(dep.id.lower(), [])
                     if dep.version_spec is None or dep.version_spec.satisfies(q.version)),
                    None,
                )
                if match is None:
                    self.unresolved.setdefault(p.identity, []).append(str(dep))
                    continue
                self._dependencies[p.identity].append(match)
                self._dependents[match.identity].append(p)

    def dependencies(self, package: Package) -> list[Package]:
        return list(self._dependencies.get(package.identity, []))

    def dependents(self, package: Package) -> list[Package]:
        return list(self._dependents.get(package.identity, []))

    def closure(self, package: Package) -> list[Package]:
        """package 的全部传递依赖（不含自身）"""
        seen: dict[PackageIdentity, Package] = {}
        stack = self.dependencies(package)
        while stack:
            current = stack.pop()
            if current.identity in seen or current.identity == package.identity:
                continue
            seen[current.identity] = current
            stack.extend(self.dependencies(current))
        return list(seen.values())


def get_minimal_set(
    packages: Iterable[Package], target_framework: str | None = None,
) -> list[Package]:
    """最小集约简: 去掉被集合内其他包依赖的包，只留下入度为零的顶层包"""
    items = list(packages)
    graph = DependencyGraph(items, target_framework)
    return [p for p in items if not graph.dependents(p)]


class UninstallWalker:
    """卸载遍历器，作用域为 repository 中的全部包"""

    def __init__(
        self,
        repository: PackageRepository,
        *,
        force_remove: bool = False,
        remove_dependencies: bool = False,
        target_framework: str | None = None,
        keep: Iterable[str] = (),
    ) -> None:
        self.repository = repository
        self.force_remove = force_remove
        self.remove_dependencies = remove_dependencies
        self.target_framework = target_framework
        self.keep = {k.lower() for k in keep}

    def resolve(self, package: Package) -> InstallPlan:
        """计算卸载 package 的计划

        异常:
            PackageInUseError: 非强制模式下仍有其他包依赖目标包
        """
        scope = list(self.repository.get_packages())
        if package.identity not in {p.identity for p in scope}:
            scope.append(package)
        graph = DependencyGraph(scope, self.target_framework)

        dependents = graph.dependents(package)
        if dependents:
            names = [d.identity.full_name for d in dependents]
            if not self.force_remove:
                raise PackageInUseError(
                    f"无法卸载 {package.identity}: 仍被 {', '.join(names)} 依赖",
                    dependents=names,
                )
            logger.warning(
                "强制卸载 %s，以下包的依赖将不再满足: %s",
                package.identity, ", ".join(names),
                extra={"package": package.id},
            )

        removal = {package.identity: package}
        if self.remove_dependencies:
            self._collect_orphans(graph, package, removal)

        return InstallPlan([
            PackageOperation(PackageAction.UNINSTALL, p)
            for p in self._order(graph, package, removal)
        ])

    def _collect_orphans(
        self, graph: DependencyGraph, root: Package, removal: dict[PackageIdentity, Package],
    ) -> None:
        for missing in graph.unresolved.get(root.identity, []):
            logger.warning("%s 的依赖 '%s' 未安装，跳过", root.identity, missing)

        candidates = graph.closure(root)
        while True:
            remaining = [p for p in graph.packages.values() if p.identity not in removal]
            top_level = {p.identity for p in get_minimal_set(remaining, self.target_framework)}
            orphans = [
                c for c in candidates
                if c.identity not in removal
                and c.identity in top_level
                and c.id.lower() not in self.keep
            ]
            if not orphans:
                break
            for orphan in orphans:
                removal[orphan.identity] = orphan
                for missing in graph.unresolved.get(orphan.identity, []):
                    logger.warning("%s 的依赖 '%s' 未安装，跳过", orphan.identity, missing)

        for c in candidates:
            if c.identity not in removal:
                logger.info("%s 仍被使用或需保留，不随 %s 卸载", c.identity, root.identity)

    @staticmethod
    def _order(
        graph: DependencyGraph, root: Package, removal: dict[PackageIdentity, Package],
    ) -> list[Package]:
        """后序收集（依赖在前）后反转，得到依赖方在前的顺序"""
        post_order: list[Package] = []
        visited: set[PackageIdentity] = set()

        def visit(p: Package) -> None:
            if p.identity in visited:
                return
            visited.add(p.identity)
            for dep in graph.dependencies(p):
                if dep.identity in removal:
                    visit(dep)
            post_order.append(p)

        for p in [root, *removal.values()]:
            visit(p)
        post_order.reverse()
        return post_order


def resolve_uninstall_plan(
    package: Package,
    repository: PackageRepository,
    *,
    force_remove: bool = False,
    remove_dependencies: bool = False,
    target_framework: str | None = None,
    keep: Iterable[str] = (),
) -> InstallPlan:
    walker = UninstallWalker(
        repository,
        force_remove=force_remove,
        remove_dependencies=remove_dependencies,
        target_framework=target_framework,
        keep=keep,
    )
    return walker.resolve(package)
