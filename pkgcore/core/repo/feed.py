"""归档包源

源目录下每个包是一个 <id>.<version>.tar.gz，归档根目录必须包含 package.yml，
其余文件按相对路径作为包内容。内容按需从归档读取，清单按 mtime 缓存。
"""

from __future__ import annotations

import functools
import logging
import os
import tarfile
import tempfile
import threading
from pathlib import Path

from pkgcore.core.exceptions import FormatError, RepositorySourceError
from pkgcore.core.manifest import MANIFEST_FILE, loads_manifest, read_manifest
from pkgcore.core.models import Package, PackageFile
from pkgcore.core.repo.base import PackageRepositoryBase

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"


def archive_name(package: Package) -> str:
    return f"{package.id}.{package.version}{ARCHIVE_SUFFIX}"


def _member_path(name: str) -> str:
    return name[2:] if name.startswith("./") else name


class FeedRepository(PackageRepositoryBase):
    """基于目录中 tar.gz 归档的只读包源"""

    def __init__(self, root: str | Path, name: str | None = None) -> None:
        self.root = Path(root)
        self.name = name or str(root)
        self._cache: dict[Path, tuple[int, Package]] = {}
        self._lock = threading.Lock()

    def _archives(self) -> list[Path]:
        try:
            return sorted(
                p for p in self.root.iterdir()
                if p.is_file() and p.name.endswith(ARCHIVE_SUFFIX)
            )
        except OSError as e:
            raise RepositorySourceError(
                f"无法访问包源 '{self.name}': {e}", source=self.name,
            ) from e

    def _read_member(self, archive: Path, member: str) -> bytes:
        try:
            with tarfile.open(archive, "r:gz") as tf:
                f = tf.extractfile(member)
                if f is None:
                    raise RepositorySourceError(
                        f"{archive.name} 中的 {member} 不是普通文件", source=self.name,
                    )
                return f.read()
        except (OSError, tarfile.TarError, KeyError) as e:
            raise RepositorySourceError(
                f"读取 {archive.name}:{member} 失败: {e}", source=self.name,
            ) from e

    def _load(self, archive: Path) -> Package | None:
        try:
            mtime = archive.stat().st_mtime_ns
            with self._lock:
                cached = self._cache.get(archive)
            if cached is not None and cached[0] == mtime:
                return cached[1]

            with tarfile.open(archive, "r:gz") as tf:
                members = [m for m in tf.getmembers() if m.isfile()]
                names = {_member_path(m.name): m for m in members}
                manifest_member = names.get(MANIFEST_FILE)
                if manifest_member is None:
                    logger.warning("归档缺少 %s，已跳过: %s", MANIFEST_FILE, archive.name)
                    return None
                manifest_file = tf.extractfile(manifest_member)
                text = manifest_file.read() if manifest_file else b""
        except (OSError, tarfile.TarError) as e:
            raise RepositorySourceError(
                f"读取归档 {archive.name} 失败: {e}", source=self.name,
            ) from e

        files = [
            PackageFile(rel, functools.partial(self._read_member, archive, member.name))
            for rel, member in sorted(names.items())
            if rel != MANIFEST_FILE
        ]
        try:
            package = loads_manifest(text, files=files, source=self.name, origin=archive.name)
        except FormatError as e:
            logger.warning("归档清单无效，已跳过: %s (%s)", archive.name, e)
            return None

        with self._lock:
            self._cache[archive] = (mtime, package)
        return package

    def get_packages(self) -> list[Package]:
        packages = []
        for archive in self._archives():
            package = self._load(archive)
            if package is not None:
                packages.append(package)
        return packages

    def find_packages_by_id(self, package_id: str) -> list[Package]:
        key = package_id.lower()
        prefix = key + "."
        result = []
        for archive in self._archives():
            if not archive.name.lower().startswith(prefix):
                continue
            package = self._load(archive)
            if package is not None and package.id.lower() == key:
                result.append(package)
        return result


def build_archive(source_dir: str | Path, output_dir: str | Path) -> Path:
    """将包含 package.yml 的目录打包为 <id>.<version>.tar.gz

    返回生成的归档路径；清单非法时抛出 FormatError。
    """
    src = Path(source_dir)
    manifest = src / MANIFEST_FILE
    if not manifest.is_file():
        raise FormatError(f"目录中缺少 {MANIFEST_FILE}: {src}", token=str(manifest))
    package = read_manifest(manifest)

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    target = out / archive_name(package)

    fd, tmp = tempfile.mkstemp(dir=str(out), prefix=".", suffix=".tmp")
    os.close(fd)
    try:
        with tarfile.open(tmp, "w:gz") as tf:
            tf.add(str(manifest), arcname=MANIFEST_FILE)
            for path in sorted(src.rglob("*")):
                if path.is_file() and path != manifest:
                    tf.add(str(path), arcname=path.relative_to(src).as_posix())
        os.replace(tmp, target)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise

    logger.info("打包完成: %s -> %s", package.identity, target)
    return target
