"""集中配置管理

从 YAML 文件加载 + 编程式覆盖，不提供进程级全局单例，
由 CLI 入口构造后显式传给 ServiceContainer。

示例 (pkgcore.yml):
    packages_dir: packages
    sources:
      - name: main
        path: feeds/main
      - feeds/mirror              # 仅路径时以路径作为名称
    ignore_failing_repositories: true
    dependency_version: highest
    update_scope: all            # all: 所有源中的最新版本; active: 仅 active_source
    active_source: main
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any

import yaml

from pkgcore.core.exceptions import ConfigError
from pkgcore.core.walker import DependencyVersion
from pkgcore.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

CONSENT_ENV_VAR = "PKGCORE_PACKAGE_RESTORE"

UPDATE_SCOPES = ("all", "active")


@dataclass
class SourceConfig:
    name: str
    path: str
    enabled: bool = True


def _parse_sources(raw: Any) -> list[SourceConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("sources 必须是列表")
    sources = []
    for item in raw:
        if isinstance(item, SourceConfig):
            sources.append(item)
        elif isinstance(item, str):
            sources.append(SourceConfig(name=item, path=item))
        elif isinstance(item, dict) and item.get("path"):
            sources.append(SourceConfig(
                name=str(item.get("name") or item["path"]),
                path=str(item["path"]),
                enabled=bool(item.get("enabled", True)),
            ))
        else:
            raise ConfigError(f"无效的包源配置: {item!r}")
    return sources


@dataclass
class Config:
    """引擎配置"""

    # 目录
    packages_dir: str = "packages"
    sources: list[SourceConfig] = field(default_factory=list)

    # 解析
    ignore_failing_repositories: bool = False
    side_by_side: bool = True
    dependency_version: str = DependencyVersion.HIGHEST.value
    allow_prerelease: bool = False
    target_framework: str = ""

    # 更新
    update_scope: str = "all"
    active_source: str = ""

    # 恢复
    max_workers: int = 4
    disable_parallel_processing: bool = False
    require_consent: bool = False
    consent_granted: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.sources = _parse_sources(self.sources)
        try:
            self.dependency_version = DependencyVersion.parse(self.dependency_version).value
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.update_scope not in UPDATE_SCOPES:
            raise ConfigError(
                f"update_scope 必须是 {UPDATE_SCOPES} 之一，当前为 '{self.update_scope}'"
            )
        try:
            workers = int(self.max_workers)
        except (TypeError, ValueError):
            raise ConfigError(f"max_workers 必须是整数，当前为 {self.max_workers!r}") from None
        if workers < 1:
            raise ConfigError(f"max_workers 必须大于 0，当前为 {self.max_workers}")
        self.max_workers = workers

    @classmethod
    def from_file(cls, path: str = "pkgcore.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认；随后应用环境变量覆盖"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError, OSError) as e:
            raise ConfigError(f"配置文件无法读取: {path} ({e})") from e
        known = {f.name for f in cls.__dataclass_fields__.values()} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            logger.debug("未识别的配置项: %s", sorted(extra))
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效: {path} ({e})") from e
        cfg.extra = extra
        cfg.apply_env()
        return cfg

    def apply_env(self, environ: dict[str, str] | None = None) -> None:
        """环境变量 PKGCORE_PACKAGE_RESTORE=1/true 视为用户已同意恢复"""
        env = os.environ if environ is None else environ
        value = env.get(CONSENT_ENV_VAR, "").strip().lower()
        if value in ("1", "true", "yes"):
            self.consent_granted = True

    @property
    def enabled_sources(self) -> list[SourceConfig]:
        return [s for s in self.sources if s.enabled]

    def to_dict(self) -> dict:
        return asdict(self)
