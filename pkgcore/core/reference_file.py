"""项目引用文件 (packages.config) 与共享存储的项目登记表 (repositories.config)

格式:
    <?xml version="1.0" encoding="utf-8"?>
    <packages>
      <package id="Foo" version="1.0.0" targetFramework="net45" />
      <package id="Bar" version="2.0.0" dependencyOnly="true" />
    </packages>

dependencyOnly="true" 表示该包只因其他包的依赖而被引用（传递引用）。
写入经由 atomic_write，中途失败不会留下损坏的文件。
"""

from __future__ import annotations

import logging
import os
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from pkgcore.core.exceptions import FormatError
from pkgcore.core.models import PackageIdentity
from pkgcore.core.version import SemanticVersion
from pkgcore.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

REFERENCE_FILE = "packages.config"
REGISTRY_FILE = "repositories.config"


@dataclass(frozen=True)
class PackageReference:
    identity: PackageIdentity
    target_framework: str | None = None
    is_direct: bool = True

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def version(self) -> SemanticVersion:
        return self.identity.version


class PackageReferenceFile:
    """读写单个项目的引用文件，条目按 id 排序写出"""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get_references(self) -> list[PackageReference]:
        """读取全部引用，文件不存在时返回空列表

        异常:
            FormatError: XML 损坏、缺少属性或版本号非法
        """
        if not self.path.exists():
            return []
        try:
            root = ET.parse(self.path).getroot()
        except ET.ParseError as e:
            raise FormatError(f"引用文件格式错误: {self.path} ({e})", token=str(self.path)) from e
        if root.tag != "packages":
            raise FormatError(f"引用文件根元素必须是 <packages>: {self.path}", token=root.tag)

        refs = []
        for element in root.findall("package"):
            pkg_id = (element.get("id") or "").strip()
            version_text = (element.get("version") or "").strip()
            if not pkg_id or not version_text:
                raise FormatError(
                    f"引用文件中的条目缺少 id 或 version: {self.path}",
                    token=ET.tostring(element, encoding="unicode").strip(),
                )
            refs.append(PackageReference(
                PackageIdentity(pkg_id, SemanticVersion.parse(version_text)),
                target_framework=element.get("targetFramework") or None,
                is_direct=(element.get("dependencyOnly") or "").lower() != "true",
            ))
        return refs

    def save(self, references: list[PackageReference]) -> None:
        root = ET.Element("packages")
        for ref in sorted(references, key=lambda r: r.identity):
            attrs = {"id": ref.id, "version": str(ref.version)}
            if ref.target_framework:
                attrs["targetFramework"] = ref.target_framework
            if not ref.is_direct:
                attrs["dependencyOnly"] = "true"
            ET.SubElement(root, "package", attrs)
        ET.indent(root, space="  ")
        content = '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"
        atomic_write(self.path, content)

    def add_entry(self, reference: PackageReference) -> None:
        """新增或替换同 id 的条目"""
        with self._lock:
            refs = [r for r in self.get_references() if r.identity.key != reference.identity.key]
            refs.append(reference)
            self.save(refs)

    def delete_entry(self, package_id: str) -> bool:
        with self._lock:
            refs = self.get_references()
            kept = [r for r in refs if r.identity.key != package_id.lower()]
            if len(kept) == len(refs):
                return False
            self.save(kept)
            return True


class ProjectRegistry:
    """共享本地存储的项目登记表 (<存储根目录>/repositories.config)

    格式:
        <?xml version="1.0" encoding="utf-8"?>
        <repositories>
          <repository path="../app/packages.config" />
        </repositories>

    路径相对存储根目录保存。读取时丢弃文件已不存在或重复的条目并回写，
    登记表为空时删除该文件。
    """

    def __init__(self, store_root: str | Path) -> None:
        self.root = Path(store_root)
        self.path = self.root / REGISTRY_FILE
        self._lock = threading.Lock()

    def _entry(self, reference_file: str | Path) -> str:
        target = Path(reference_file).resolve()
        try:
            return Path(os.path.relpath(target, self.root.resolve())).as_posix()
        except ValueError:
            # 不同盘符无法取相对路径
            return target.as_posix()

    def _read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            root = ET.parse(self.path).getroot()
        except ET.ParseError as e:
            raise FormatError(f"项目登记表格式错误: {self.path} ({e})", token=str(self.path)) from e
        if root.tag != "repositories":
            raise FormatError(f"项目登记表根元素必须是 <repositories>: {self.path}", token=root.tag)
        return [(e.get("path") or "").strip() for e in root.findall("repository")]

    def _save(self, entries: list[str]) -> None:
        if not entries:
            self.path.unlink(missing_ok=True)
            return
        root = ET.Element("repositories")
        for entry in sorted(entries, key=str.upper):
            ET.SubElement(root, "repository", {"path": entry})
        ET.indent(root, space="  ")
        content = '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"
        atomic_write(self.path, content)

    def register(self, reference_file: str | Path) -> bool:
        """登记引用文件，已登记时返回 False"""
        entry = self._entry(reference_file)
        with self._lock:
            entries = self._read()
            if entry in entries:
                return False
            self._save(entries + [entry])
        logger.debug("登记项目引用文件: %s", entry)
        return True

    def unregister(self, reference_file: str | Path) -> bool:
        entry = self._entry(reference_file)
        with self._lock:
            entries = self._read()
            if entry not in entries:
                return False
            self._save([e for e in entries if e != entry])
        return True

    def reference_files(self) -> list[Path]:
        """返回仍然存在的已登记引用文件（绝对路径）"""
        with self._lock:
            entries = self._read()
            paths: list[Path] = []
            kept: list[str] = []
            for entry in entries:
                path = (self.root / entry).resolve() if entry else None
                if path is None or not path.is_file() or path in paths:
                    logger.debug("丢弃无效的登记条目: %r", entry)
                    continue
                paths.append(path)
                kept.append(entry)
            if len(kept) != len(entries):
                self._save(kept)
        return paths
