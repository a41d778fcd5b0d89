"""仓库基类

子类只需实现 get_packages()，按 id / 范围的查询与更新计算由基类提供。
具备更高效索引的子类（如本地存储）可覆盖 find_packages_by_id。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator

from pkgcore.core.models import Package, PackageIdentity
from pkgcore.core.version import SemanticVersion, VersionSpec

logger = logging.getLogger(__name__)


class PackageRepositoryBase(ABC):
    """包仓库抽象基类"""

    name: str = ""

    @abstractmethod
    def get_packages(self) -> Iterable[Package]:
        ...

    def find_packages_by_id(self, package_id: str) -> list[Package]:
        key = package_id.lower()
        return [p for p in self.get_packages() if p.id.lower() == key]

    def find_packages(
        self,
        package_id: str,
        version_spec: VersionSpec | None = None,
        allow_prerelease: bool = False,
    ) -> list[Package]:
        """满足范围的全部版本，按版本从高到低排序"""
        matches = [
            p for p in self.find_packages_by_id(package_id)
            if (allow_prerelease or not p.is_prerelease)
            and (version_spec is None or version_spec.satisfies(p.version))
        ]
        matches.sort(key=lambda p: p.version, reverse=True)
        return matches

    def find_package(
        self,
        package_id: str,
        version_spec: VersionSpec | None = None,
        allow_prerelease: bool = False,
    ) -> Package | None:
        """返回满足范围的最高版本

        version_spec 为 None 时返回最新稳定版（allow_prerelease 时为最新版）。
        精确指定的预发布版本自动放开预发布过滤。
        """
        if (
            version_spec is not None
            and version_spec.is_exact
            and version_spec.min_version.is_prerelease  # type: ignore[union-attr]
        ):
            allow_prerelease = True
        matches = self.find_packages(package_id, version_spec, allow_prerelease)
        return matches[0] if matches else None

    def find_package_by_version(
        self, package_id: str, version: SemanticVersion,
    ) -> Package | None:
        for p in self.find_packages_by_id(package_id):
            if p.version == version:
                return p
        return None

    def exists(self, package_id: str, version: SemanticVersion) -> bool:
        return self.find_package_by_version(package_id, version) is not None

    def get_updates(
        self,
        installed: Iterable[PackageIdentity],
        include_prerelease: bool = False,
        include_all_versions: bool = False,
    ) -> list[Package]:
        """对每个已安装包返回严格更高的可用版本

        默认每个包只返回最新的一个，include_all_versions 时返回全部更高版本。
        """
        updates: list[Package] = []
        for identity in installed:
            newer = [
                p for p in self.find_packages(
                    identity.id, allow_prerelease=include_prerelease,
                )
                if p.version > identity.version
            ]
            if not newer:
                continue
            updates.extend(newer if include_all_versions else newer[:1])
        return updates

    @contextmanager
    def start_operation(
        self, operation: str, package_id: str | None = None,
    ) -> Iterator[None]:
        yield

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
