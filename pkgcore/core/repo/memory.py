"""内存仓库 — 测试与程序化构造包源时使用"""

from __future__ import annotations

import threading
from typing import Iterable

from pkgcore.core.models import Package, PackageIdentity
from pkgcore.core.repo.base import PackageRepositoryBase


class InMemoryRepository(PackageRepositoryBase):
    """以标识为键保存包的可变仓库，同一标识后加入者覆盖先加入者"""

    def __init__(self, packages: Iterable[Package] = (), name: str = "memory") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._packages: dict[PackageIdentity, Package] = {}
        for p in packages:
            self.add_package(p)

    def get_packages(self) -> list[Package]:
        with self._lock:
            return list(self._packages.values())

    def add_package(self, package: Package) -> None:
        with self._lock:
            self._packages[package.identity] = package

    def remove_package(self, package: Package) -> None:
        with self._lock:
            self._packages.pop(package.identity, None)

    def __len__(self) -> int:
        return len(self._packages)
