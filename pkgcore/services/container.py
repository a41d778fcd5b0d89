"""服务容器 — 组合根，由一份 Config 构造引擎各组件

同一容器内的实例共享状态（本地存储缓存、KeyedLock、项目作用域），
每次 CLI 调用构造一个新容器，不存在进程级单例。

依赖关系图（→ 表示依赖）:
  package_manager → source_repository, local_repository, update_repository
  restore         → package_manager, project_registry
  project(path)   → package_manager, scope → project_registry

用法:
    cfg = Config.from_file("pkgcore.yml")
    container = ServiceContainer(cfg)
    container.package_manager.install_package("Foo")
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from pkgcore.core.config import Config

if TYPE_CHECKING:
    from pkgcore.core.package_manager import PackageManager
    from pkgcore.core.project_manager import ProjectManager, ProjectScope
    from pkgcore.core.protocols import PackageEventListener, PackageRepository
    from pkgcore.core.reference_file import ProjectRegistry
    from pkgcore.core.repo.local import LocalPackageRepository
    from pkgcore.core.restore import RestoreOrchestrator

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        listeners: Iterable[PackageEventListener] = (),
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._config = config or Config()
        self._listeners = list(listeners)
        self._cancel_event = cancel_event
        self._instances: dict[str, object] = {}
        self._projects: dict[Path, ProjectManager] = {}

    @property
    def config(self) -> Config:
        return self._config

    # ---- 仓库 ----

    def _feed(self, name: str) -> PackageRepository:
        from pkgcore.core.repo.feed import FeedRepository
        for src in self._config.enabled_sources:
            if src.name == name:
                return FeedRepository(src.path, name=src.name)
        raise KeyError(name)

    @property
    def source_repository(self) -> PackageRepository:
        if "source" not in self._instances:
            from pkgcore.core.repo.aggregate import AggregateRepository
            from pkgcore.core.repo.feed import FeedRepository
            feeds = [FeedRepository(s.path, name=s.name) for s in self._config.enabled_sources]
            if not feeds:
                logger.warning("未配置任何包源")
            self._instances["source"] = AggregateRepository(
                feeds,
                ignore_failing_repositories=self._config.ignore_failing_repositories,
            )
        return self._instances["source"]  # type: ignore[return-value]

    @property
    def update_repository(self) -> PackageRepository | None:
        """update_scope 为 active 时只在 active_source 中查找新版本"""
        if self._config.update_scope != "active":
            return None
        if "update" not in self._instances:
            from pkgcore.core.exceptions import ConfigError
            enabled = self._config.enabled_sources
            name = self._config.active_source or (enabled[0].name if enabled else "")
            try:
                self._instances["update"] = self._feed(name)
            except KeyError:
                raise ConfigError(f"update_scope=active 但找不到活动包源: '{name}'") from None
        return self._instances["update"]  # type: ignore[return-value]

    @property
    def local_repository(self) -> LocalPackageRepository:
        if "local" not in self._instances:
            from pkgcore.core.repo.local import LocalPackageRepository
            self._instances["local"] = LocalPackageRepository(
                self._config.packages_dir,
                use_side_by_side=self._config.side_by_side,
            )
        return self._instances["local"]  # type: ignore[return-value]

    # ---- 管理器 ----

    @property
    def package_manager(self) -> PackageManager:
        if "package_manager" not in self._instances:
            from pkgcore.core.package_manager import PackageManager
            self._instances["package_manager"] = PackageManager(
                self.source_repository,
                self.local_repository,
                listeners=self._listeners,
                dependency_version=self._config.dependency_version,
                target_framework=self._config.target_framework or None,
                update_repository=self.update_repository,
            )
        return self._instances["package_manager"]  # type: ignore[return-value]

    @property
    def restore(self) -> RestoreOrchestrator:
        if "restore" not in self._instances:
            from pkgcore.core.restore import RestoreOrchestrator
            self._instances["restore"] = RestoreOrchestrator(
                self.package_manager,
                max_workers=self._config.max_workers,
                disable_parallel=self._config.disable_parallel_processing,
                require_consent=self._config.require_consent,
                consent_granted=self._config.consent_granted,
                cancel_event=self._cancel_event,
                project_registry=self.project_registry,
            )
        return self._instances["restore"]  # type: ignore[return-value]

    @property
    def project_registry(self) -> ProjectRegistry:
        """本地存储根目录下的项目登记表，跨 CLI 调用共享引用计数"""
        if "registry" not in self._instances:
            from pkgcore.core.reference_file import ProjectRegistry
            self._instances["registry"] = ProjectRegistry(self._config.packages_dir)
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def scope(self) -> ProjectScope:
        if "scope" not in self._instances:
            from pkgcore.core.project_manager import ProjectScope
            self._instances["scope"] = ProjectScope(self.project_registry)
        return self._instances["scope"]  # type: ignore[return-value]

    def project(self, reference_file: str | Path, name: str | None = None) -> ProjectManager:
        """按引用文件路径获取项目管理器，同一路径返回同一实例"""
        from pkgcore.core.project_manager import ProjectManager
        from pkgcore.core.reference_file import PackageReferenceFile

        path = Path(reference_file).resolve()
        if path not in self._projects:
            self._projects[path] = ProjectManager(
                name or path.parent.name,
                PackageReferenceFile(path),
                self.package_manager,
                scope=self.scope,
                listeners=self._listeners,
            )
        return self._projects[path]
