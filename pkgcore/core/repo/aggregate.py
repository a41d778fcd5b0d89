"""聚合仓库

按配置顺序探测多个包源并合并结果:
  - 同一标识出现在多个源时，先配置的源优先
  - 单个源失败时，若 ignore_failing_repositories 为 True 则跳过并记录告警，
    同一次操作内该源不再被探测、告警只输出一次；否则抛出 RepositorySourceError
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Callable, Iterable, Iterator, TypeVar

from pkgcore.core.exceptions import RepositorySourceError
from pkgcore.core.models import Package, PackageIdentity
from pkgcore.core.protocols import PackageRepository
from pkgcore.core.repo.base import PackageRepositoryBase
from pkgcore.core.version import SemanticVersion

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregateRepository(PackageRepositoryBase):
    """多源聚合仓库"""

    def __init__(
        self,
        repositories: Iterable[PackageRepository],
        ignore_failing_repositories: bool = False,
        name: str = "aggregate",
    ) -> None:
        self.name = name
        self.repositories = list(repositories)
        self.ignore_failing_repositories = ignore_failing_repositories
        self._failing: set[int] = set()
        self._lock = threading.Lock()
        self._depth = 0

    @property
    def failing_repositories(self) -> list[PackageRepository]:
        with self._lock:
            return [r for r in self.repositories if id(r) in self._failing]

    def _active(self) -> list[PackageRepository]:
        with self._lock:
            return [r for r in self.repositories if id(r) not in self._failing]

    def _probe(self, repo: PackageRepository, query: Callable[[PackageRepository], T], default: T) -> T:
        try:
            return query(repo)
        except (RepositorySourceError, OSError) as e:
            if not self.ignore_failing_repositories:
                if isinstance(e, RepositorySourceError):
                    raise
                raise RepositorySourceError(
                    f"包源 '{repo.name}' 访问失败: {e}", source=repo.name,
                ) from e
            with self._lock:
                first = id(repo) not in self._failing
                self._failing.add(id(repo))
            if first:
                logger.warning("包源不可用，已跳过: %s (%s)", repo.name, e, extra={"source": repo.name})
            return default

    def _merge(self, query: Callable[[PackageRepository], Iterable[Package]]) -> list[Package]:
        seen: set[PackageIdentity] = set()
        merged: list[Package] = []
        for repo in self._active():
            for package in self._probe(repo, lambda r: list(query(r)), []):
                if package.identity not in seen:
                    seen.add(package.identity)
                    merged.append(package)
        return merged

    def get_packages(self) -> list[Package]:
        return self._merge(lambda r: r.get_packages())

    def find_packages_by_id(self, package_id: str) -> list[Package]:
        return self._merge(lambda r: r.find_packages_by_id(package_id))

    def find_package_by_version(
        self, package_id: str, version: SemanticVersion,
    ) -> Package | None:
        for repo in self._active():
            found = self._probe(repo, lambda r: r.find_package_by_version(package_id, version), None)
            if found is not None:
                return found
        return None

    @contextmanager
    def start_operation(
        self, operation: str, package_id: str | None = None,
    ) -> Iterator[None]:
        """最外层操作开始时清空失败记录，并把操作边界传递给各成员源"""
        with self._lock:
            if self._depth == 0:
                self._failing.clear()
            self._depth += 1
        try:
            with ExitStack() as stack:
                for repo in self.repositories:
                    stack.enter_context(repo.start_operation(operation, package_id))
                yield
        finally:
            with self._lock:
                self._depth -= 1
