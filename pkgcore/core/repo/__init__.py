"""包仓库

- base.py: 仓库基类，按 id / 版本范围查询与更新计算
- memory.py: 内存仓库
- feed.py: tar.gz 归档包源
- local.py: 本地包存储（原子写入 / 删除）
- aggregate.py: 多源聚合，失败源容忍
"""

from pkgcore.core.repo.aggregate import AggregateRepository
from pkgcore.core.repo.base import PackageRepositoryBase
from pkgcore.core.repo.feed import FeedRepository, build_archive
from pkgcore.core.repo.local import LocalPackageRepository, PackagePathResolver
from pkgcore.core.repo.memory import InMemoryRepository

__all__ = [
    "AggregateRepository",
    "FeedRepository",
    "InMemoryRepository",
    "LocalPackageRepository",
    "PackagePathResolver",
    "PackageRepositoryBase",
    "build_archive",
]
