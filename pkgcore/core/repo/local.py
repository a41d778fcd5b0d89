"""本地包存储

目录布局:
  <root>/<id>.<version>/package.yml   并排模式（默认）
  <root>/<id>/package.yml             非并排模式，同一 id 只能安装一个版本

不变式: 包目录与 package.yml 同时存在才视为已安装。
写入先落到 root 下的隐藏临时目录，全部成功后一次 rename 使其可见；
以 "." 开头的目录永远不会被当作已安装包。
"""

from __future__ import annotations

import functools
import logging
import os
import shutil
import tempfile
import threading
import uuid
from pathlib import Path, PurePosixPath

from pkgcore.core.exceptions import ExtractionError, FormatError, PkgCoreError
from pkgcore.core.manifest import MANIFEST_FILE, dumps_manifest, read_manifest
from pkgcore.core.models import Package, PackageFile, PackageIdentity
from pkgcore.core.repo.base import PackageRepositoryBase
from pkgcore.core.version import SemanticVersion

logger = logging.getLogger(__name__)


class PackagePathResolver:
    """计算包在本地存储中的目录"""

    def __init__(self, root: str | Path, use_side_by_side: bool = True) -> None:
        self.root = Path(root)
        self.use_side_by_side = use_side_by_side

    def directory_name(self, package_id: str, version: SemanticVersion) -> str:
        if self.use_side_by_side:
            return f"{package_id}.{version}"
        return package_id

    def install_path(self, identity: PackageIdentity | Package) -> Path:
        return self.root / self.directory_name(identity.id, identity.version)

    def manifest_path(self, identity: PackageIdentity | Package) -> Path:
        return self.install_path(identity) / MANIFEST_FILE


def _safe_join(base: Path, relative: str) -> Path:
    """拼接包内相对路径，拒绝绝对路径与 ".." 逃逸"""
    rel = PurePosixPath(relative.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ExtractionError(f"包内文件路径非法: '{relative}'")
    dest = base.joinpath(*rel.parts)
    if not dest.resolve().is_relative_to(base.resolve()):
        raise ExtractionError(f"包内文件路径越界: '{relative}'")
    return dest


class LocalPackageRepository(PackageRepositoryBase):
    """磁盘上的已安装包集合"""

    def __init__(
        self,
        root: str | Path,
        use_side_by_side: bool = True,
        name: str = "local",
    ) -> None:
        self.name = name
        self.path_resolver = PackagePathResolver(root, use_side_by_side)
        self._cache: dict[Path, tuple[int, Package]] = {}
        self._cache_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self.path_resolver.root

    # ---- 查询 ----

    def _package_dirs(self) -> list[Path]:
        if not self.root.is_dir():
            return []
        return sorted(
            d for d in self.root.iterdir()
            if d.is_dir() and not d.name.startswith(".")
        )

    def _load(self, directory: Path) -> Package | None:
        manifest = directory / MANIFEST_FILE
        try:
            mtime = manifest.stat().st_mtime_ns
        except FileNotFoundError:
            return None
        with self._cache_lock:
            cached = self._cache.get(manifest)
            if cached is not None and cached[0] == mtime:
                return cached[1]

        files = tuple(
            PackageFile(
                path.relative_to(directory).as_posix(),
                functools.partial(path.read_bytes),
            )
            for path in sorted(directory.rglob("*"))
            if path.is_file() and path != manifest
        )
        try:
            package = read_manifest(manifest, files=files, source=self.name)
        except FormatError as e:
            logger.warning("跳过清单损坏的本地包: %s (%s)", directory.name, e)
            return None
        with self._cache_lock:
            self._cache[manifest] = (mtime, package)
        return package

    def get_packages(self) -> list[Package]:
        packages = []
        for directory in self._package_dirs():
            package = self._load(directory)
            if package is not None:
                packages.append(package)
        return packages

    def find_packages_by_id(self, package_id: str) -> list[Package]:
        key = package_id.lower()
        if self.path_resolver.use_side_by_side:
            prefix = key + "."
            dirs = [d for d in self._package_dirs() if d.name.lower().startswith(prefix)]
        else:
            dirs = [d for d in self._package_dirs() if d.name.lower() == key]
        result = []
        for directory in dirs:
            package = self._load(directory)
            if package is not None and package.id.lower() == key:
                result.append(package)
        return result

    def _existing_dir(self, identity: PackageIdentity | Package) -> Path | None:
        # id 忽略大小写，磁盘上的目录名保留安装时的写法
        expected = self.path_resolver.install_path(identity)
        if expected.is_dir():
            return expected
        name = expected.name.lower()
        return next((d for d in self._package_dirs() if d.name.lower() == name), None)

    def exists(self, package_id: str, version: SemanticVersion) -> bool:
        """只检查目录与清单是否存在，不读取内容"""
        directory = self._existing_dir(PackageIdentity(package_id, version))
        if directory is None or not (directory / MANIFEST_FILE).is_file():
            return False
        if self.path_resolver.use_side_by_side:
            return True
        return self.find_package_by_version(package_id, version) is not None

    def install_path(self, identity: PackageIdentity | Package) -> Path:
        return self._existing_dir(identity) or self.path_resolver.install_path(identity)

    # ---- 写入 ----

    def add_package(self, package: Package) -> Path:
        """原子地写入一个包，已存在时直接返回其目录

        异常:
            ExtractionError: 任一文件写入失败，临时目录已清理
        """
        target = self.install_path(package)
        if self.exists(package.id, package.version):
            return target

        if target.exists():
            occupant = self._load(target)
            if occupant is not None:
                raise ExtractionError(
                    f"目录 {target.name} 已被 {occupant.identity} 占用，"
                    f"无法安装 {package.identity}"
                )
            logger.warning("清理不完整的包目录: %s", target)
            shutil.rmtree(target)

        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=str(self.root), prefix=f".{target.name}.", suffix=".tmp"))
        try:
            for entry in package.files:
                dest = _safe_join(staging, entry.path)
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(entry.read())
            # 清单最后写入，作为完整性标记
            (staging / MANIFEST_FILE).write_text(dumps_manifest(package), encoding="utf-8")
            os.replace(staging, target)
        except (OSError, PkgCoreError) as e:
            shutil.rmtree(staging, ignore_errors=True)
            if isinstance(e, ExtractionError):
                raise
            raise ExtractionError(f"解压 {package.identity} 失败: {e}") from e

        logger.debug("已写入本地存储: %s -> %s", package.identity, target)
        return target

    def remove_package(self, package: Package | PackageIdentity) -> bool:
        """删除包目录；先改名为隐藏目录使其立即不可见，再递归删除"""
        target = self.install_path(package)
        if not target.exists():
            return False
        if not self.path_resolver.use_side_by_side and not self.exists(package.id, package.version):
            logger.warning("目录 %s 中安装的不是 %s，跳过删除", target.name, package.version)
            return False
        tombstone = self.root / f".{target.name}.{uuid.uuid4().hex[:8]}.deleting"
        os.replace(target, tombstone)
        with self._cache_lock:
            self._cache.pop(target / MANIFEST_FILE, None)
        try:
            shutil.rmtree(tombstone)
        except OSError as e:
            # 包已不可见，残留的隐藏目录不影响安装状态
            logger.warning("清理已删除包的残留目录失败: %s (%s)", tombstone, e)
        logger.debug("已从本地存储删除: %s", target.name)
        return True
