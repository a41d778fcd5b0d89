"""测试套共享 fixture — 包构造 + 包源 / 本地存储

  make_package("Foo 1.0.0", ["Bar [1.0,2.0)"])    内存中的 Package
  write_feed(path, *packages)                       写成 tar.gz 包源目录
  store                                              tmp_path 下的本地存储
  make_manager(source, ...)                          以 store 为本地存储的 PackageManager

依赖写法与清单一致: "Bar" 表示任意版本，"Bar 1.0" 表示精确版本，
"Bar [1.0,2.0)" 表示区间。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from pkgcore.core.manifest import MANIFEST_FILE, dumps_manifest
from pkgcore.core.models import DependencySet, Package, PackageDependency, PackageFile
from pkgcore.core.package_manager import PackageManager
from pkgcore.core.repo.feed import build_archive
from pkgcore.core.repo.local import LocalPackageRepository
from pkgcore.core.version import SemanticVersion, VersionSpec


def _dependency(text: str) -> PackageDependency:
    dep_id, _, spec = text.strip().partition(" ")
    return PackageDependency(dep_id, VersionSpec.parse(spec) if spec.strip() else None)


def _make_package(
    identity: str,
    deps: Iterable[str] = (),
    *,
    groups: dict[str, Iterable[str]] | None = None,
    files: dict[str, bytes] | None = None,
    language: str = "",
    description: str = "",
) -> Package:
    pkg_id, version = identity.split()
    sets = []
    deps = tuple(_dependency(d) for d in deps)
    if deps:
        sets.append(DependencySet(None, deps))
    for fw, group_deps in (groups or {}).items():
        sets.append(DependencySet(fw, tuple(_dependency(d) for d in group_deps)))
    content = files if files is not None else {"lib/readme.txt": f"{identity}\n".encode()}
    return Package(
        id=pkg_id,
        version=SemanticVersion.parse(version),
        dependency_sets=tuple(sets),
        files=tuple(PackageFile(path, lambda data=data: data) for path, data in content.items()),
        description=description,
        language=language,
    )


def _write_feed(root: Path, *packages: Package) -> Path:
    """把包逐个写成源目录再打包为归档，返回包源目录"""
    root.mkdir(parents=True, exist_ok=True)
    staging = root.parent / f"{root.name}-src"
    for package in packages:
        src = staging / f"{package.id}.{package.version}"
        src.mkdir(parents=True, exist_ok=True)
        (src / MANIFEST_FILE).write_text(dumps_manifest(package), encoding="utf-8")
        for entry in package.files:
            dest = src / entry.path
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(entry.read())
        build_archive(src, root)
    return root


@pytest.fixture()
def make_package() -> Callable[..., Package]:
    return _make_package


@pytest.fixture()
def write_feed() -> Callable[..., Path]:
    return _write_feed


@pytest.fixture()
def store(tmp_path: Path) -> LocalPackageRepository:
    return LocalPackageRepository(tmp_path / "packages")


@pytest.fixture()
def make_manager(store: LocalPackageRepository) -> Callable[..., PackageManager]:
    def factory(source: Any, **kwargs: Any) -> PackageManager:
        return PackageManager(source, kwargs.pop("local", store), **kwargs)
    return factory
