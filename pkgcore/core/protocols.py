"""领域协议定义

集中定义引擎各层之间的接口契约（Protocol），
遍历器与管理器只依赖这些协议，不依赖具体仓库实现。

使用 typing.Protocol 而非 ABC，测试中的替身类无需继承即可满足协议。
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from pkgcore.core.events import PackageOperationEvent
    from pkgcore.core.models import Package, PackageIdentity
    from pkgcore.core.version import SemanticVersion, VersionSpec


# =========================================================================
# 仓库协议
# =========================================================================

class PackageRepository(Protocol):
    """包仓库协议

    本地存储、归档源、内存源与聚合源都满足此协议。
    """

    name: str

    def get_packages(self) -> Iterable[Package]:
        """枚举仓库中的全部包"""
        ...

    def find_packages_by_id(self, package_id: str) -> list[Package]:
        """返回某 id 的所有已知版本，不保证顺序"""
        ...

    def find_packages(
        self,
        package_id: str,
        version_spec: VersionSpec | None = None,
        allow_prerelease: bool = False,
    ) -> list[Package]:
        """满足范围的全部版本，按版本从高到低排序"""
        ...

    def find_package(
        self,
        package_id: str,
        version_spec: VersionSpec | None = None,
        allow_prerelease: bool = False,
    ) -> Package | None:
        """返回满足范围的最高版本，无匹配返回 None"""
        ...

    def find_package_by_version(
        self, package_id: str, version: SemanticVersion,
    ) -> Package | None:
        ...

    def get_updates(
        self,
        installed: Iterable[PackageIdentity],
        include_prerelease: bool = False,
        include_all_versions: bool = False,
    ) -> list[Package]:
        """对每个已安装包返回严格更高的可用版本"""
        ...

    def start_operation(
        self, operation: str, package_id: str | None = None,
    ) -> AbstractContextManager[None]:
        """标记一次逻辑操作的边界（如一次安装 / 恢复）"""
        ...


# =========================================================================
# 生命周期事件协议
# =========================================================================

class PackageEventListener(Protocol):
    """包生命周期事件订阅者"""

    def __call__(self, event: PackageOperationEvent) -> None:
        ...
