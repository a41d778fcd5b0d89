"""核心数据模型

包标识、依赖声明、包快照与安装计划集中定义，
仓库 / 遍历器 / 管理器统一从此处导入。
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator

from pkgcore.core.frameworks import select_compatible
from pkgcore.core.version import SemanticVersion, VersionSpec

# =========================================================================
# 标识与依赖
# =========================================================================


@functools.total_ordering
class PackageIdentity:
    """(id, version) 二元组，id 忽略大小写"""

    __slots__ = ("id", "version")

    def __init__(self, id: str, version: SemanticVersion | str) -> None:  # noqa: A002
        if not id or not id.strip():
            raise ValueError("包 id 不能为空")
        if isinstance(version, str):
            version = SemanticVersion.parse(version)
        object.__setattr__(self, "id", id.strip())
        object.__setattr__(self, "version", version)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("PackageIdentity 不可修改")

    @property
    def key(self) -> str:
        return self.id.lower()

    @property
    def full_name(self) -> str:
        return f"{self.id} {self.version}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.key == other.key and self.version == other.version

    def __lt__(self, other: PackageIdentity) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        # 不同 id 之间按 id 排序只为结果稳定，同 id 内按版本
        return (self.key, self.version) < (other.key, other.version)

    def __hash__(self) -> int:
        return hash((self.key, self.version))

    def __str__(self) -> str:
        return self.full_name

    def __repr__(self) -> str:
        return f"PackageIdentity('{self.id}', '{self.version}')"


@dataclass(frozen=True)
class PackageDependency:
    """依赖声明，version_spec 为 None 表示任意版本（优先最新）"""

    id: str
    version_spec: VersionSpec | None = None

    def __str__(self) -> str:
        if self.version_spec is None:
            return self.id
        return f"{self.id} {self.version_spec.pretty()}"


@dataclass(frozen=True)
class DependencySet:
    """按目标框架分组的依赖，target_framework 为 None 表示不区分框架"""

    target_framework: str | None = None
    dependencies: tuple[PackageDependency, ...] = ()


@dataclass(frozen=True, eq=False)
class PackageFile:
    """包内容条目：相对目标路径 + 延迟读取的内容"""

    path: str
    loader: Callable[[], bytes] = field(repr=False)

    def read(self) -> bytes:
        return self.loader()


# =========================================================================
# 包快照
# =========================================================================


@dataclass(frozen=True, eq=False)
class Package:
    """从仓库物化出的不可变包快照"""

    id: str
    version: SemanticVersion
    dependency_sets: tuple[DependencySet, ...] = ()
    files: tuple[PackageFile, ...] = ()
    description: str = ""
    language: str = ""
    source: str = ""

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(self.id, self.version)

    @property
    def is_prerelease(self) -> bool:
        return self.version.is_prerelease

    def dependencies_for(self, target_framework: str | None = None) -> list[PackageDependency]:
        """返回适用于目标框架的依赖

        未指定目标框架时合并所有分组（按 id 去重，先出现者优先）。
        """
        if target_framework:
            chosen = select_compatible(
                target_framework,
                [(s.target_framework, s) for s in self.dependency_sets],
            )
            return list(chosen.dependencies) if chosen else []

        merged: dict[str, PackageDependency] = {}
        for dep_set in self.dependency_sets:
            for dep in dep_set.dependencies:
                merged.setdefault(dep.id.lower(), dep)
        return list(merged.values())

    def find_dependency(
        self, dependency_id: str, target_framework: str | None = None,
    ) -> PackageDependency | None:
        key = dependency_id.lower()
        for dep in self.dependencies_for(target_framework):
            if dep.id.lower() == key:
                return dep
        return None

    @property
    def satellite_runtime_id(self) -> str | None:
        """卫星包对应的主包 id，非卫星包返回 None

        卫星包: 设置了 language、id 以 ".<language>" 结尾，且依赖其主包。
        """
        if not self.language:
            return None
        suffix = f".{self.language}".lower()
        if not self.id.lower().endswith(suffix):
            return None
        runtime_id = self.id[: -len(suffix)]
        if not runtime_id or self.find_dependency(runtime_id) is None:
            return None
        return runtime_id

    def is_satellite(self) -> bool:
        return self.satellite_runtime_id is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Package):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def __str__(self) -> str:
        return self.identity.full_name


# =========================================================================
# 安装计划
# =========================================================================


class PackageAction(str, Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"


@dataclass(frozen=True)
class PackageOperation:
    action: PackageAction
    package: Package

    @property
    def identity(self) -> PackageIdentity:
        return self.package.identity

    def __str__(self) -> str:
        return f"{self.action.value} {self.package.identity}"


@dataclass
class InstallPlan:
    """有序操作序列

    安装顺序为依赖在前，卸载顺序为依赖方在前。
    同一标识的安装与卸载在构造时互相抵消，保证不会同时出现。
    """

    operations: list[PackageOperation] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.operations = self.reduce(self.operations)

    @staticmethod
    def reduce(operations: list[PackageOperation]) -> list[PackageOperation]:
        """抵消同一标识上相反的操作，保留其余操作的原有顺序"""
        pending: dict[tuple[PackageIdentity, PackageAction], list[int]] = {}
        dropped: set[int] = set()
        for idx, op in enumerate(operations):
            opposite = (op.identity, _flip(op.action))
            slots = pending.get(opposite)
            if slots:
                dropped.add(slots.pop())
                dropped.add(idx)
                continue
            pending.setdefault((op.identity, op.action), []).append(idx)
        return [op for idx, op in enumerate(operations) if idx not in dropped]

    @property
    def installs(self) -> list[Package]:
        return [op.package for op in self.operations if op.action is PackageAction.INSTALL]

    @property
    def uninstalls(self) -> list[Package]:
        return [op.package for op in self.operations if op.action is PackageAction.UNINSTALL]

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __iter__(self) -> Iterator[PackageOperation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)


def _flip(action: PackageAction) -> PackageAction:
    return PackageAction.UNINSTALL if action is PackageAction.INSTALL else PackageAction.INSTALL
