"""包清单 (package.yml)

格式:
    id: Foo.Core
    version: 1.2.0
    description: ...
    language: zh-CN              # 可选，卫星包的语言
    dependencies:                # 不区分框架的依赖
      - id: Bar
        version: "[1.0,2.0)"     # 省略表示任意版本
    dependency_groups:           # 按目标框架分组的依赖
      - target_framework: net45
        dependencies:
          - id: Baz
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable

import yaml

from pkgcore.core.exceptions import FormatError
from pkgcore.core.models import DependencySet, Package, PackageDependency, PackageFile
from pkgcore.core.version import SemanticVersion, VersionSpec
from pkgcore.utils.yaml_io import dump_yaml, load_yaml, parse_yaml

MANIFEST_FILE = "package.yml"

_ID_RE = re.compile(r"^\w+(?:[.\-]\w+)*$")


def _require_str(data: dict[str, Any], key: str, origin: str) -> str:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        raise FormatError(f"{origin}: 缺少字段 '{key}'", token=key)
    return str(value).strip()


def _version_text(value: Any, key: str, origin: str) -> str:
    # YAML 会把未加引号的 1.10 解析为浮点数 1.1，只接受字符串与整数
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise FormatError(
            f"{origin}: {key} 的值 {value!r} 不是字符串，请给版本号加引号 (如 \"1.10\")",
            token=str(value),
        )
    return str(value).strip()


def _parse_dependencies(items: Any, origin: str) -> tuple[PackageDependency, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise FormatError(f"{origin}: dependencies 必须是列表", token="dependencies")
    deps: list[PackageDependency] = []
    for item in items:
        if isinstance(item, str):
            item = {"id": item}
        if not isinstance(item, dict):
            raise FormatError(f"{origin}: 无效的依赖声明 {item!r}", token=str(item))
        dep_id = _require_str(item, "id", origin)
        spec_text = item.get("version")
        spec = (
            VersionSpec.parse(_version_text(spec_text, f"{dep_id} 的 version", origin))
            if spec_text not in (None, "") else None
        )
        deps.append(PackageDependency(dep_id, spec))
    return tuple(deps)


def package_from_dict(
    data: dict[str, Any],
    files: Iterable[PackageFile] = (),
    source: str = "",
    origin: str = MANIFEST_FILE,
) -> Package:
    """由清单字典构造 Package，字段缺失或格式错误抛出 FormatError"""
    pkg_id = _require_str(data, "id", origin)
    if not _ID_RE.match(pkg_id):
        raise FormatError(f"{origin}: 无效的包 id '{pkg_id}'", token=pkg_id)
    _require_str(data, "version", origin)
    version = SemanticVersion.parse(_version_text(data["version"], "version", origin))

    sets: list[DependencySet] = []
    plain = _parse_dependencies(data.get("dependencies"), origin)
    if plain:
        sets.append(DependencySet(None, plain))
    for group in data.get("dependency_groups") or []:
        if not isinstance(group, dict):
            raise FormatError(f"{origin}: 无效的依赖分组 {group!r}", token=str(group))
        sets.append(DependencySet(
            group.get("target_framework") or None,
            _parse_dependencies(group.get("dependencies"), origin),
        ))

    return Package(
        id=pkg_id,
        version=version,
        dependency_sets=tuple(sets),
        files=tuple(files),
        description=str(data.get("description", "") or ""),
        language=str(data.get("language", "") or ""),
        source=source,
    )


def _dependency_to_dict(dep: PackageDependency) -> dict[str, str]:
    entry = {"id": dep.id}
    if dep.version_spec is not None and str(dep.version_spec):
        entry["version"] = str(dep.version_spec)
    return entry


def package_to_dict(package: Package) -> dict[str, Any]:
    data: dict[str, Any] = {"id": package.id, "version": str(package.version)}
    if package.description:
        data["description"] = package.description
    if package.language:
        data["language"] = package.language

    groups = []
    for dep_set in package.dependency_sets:
        deps = [_dependency_to_dict(d) for d in dep_set.dependencies]
        if dep_set.target_framework is None:
            data.setdefault("dependencies", []).extend(deps)
        else:
            groups.append({"target_framework": dep_set.target_framework, "dependencies": deps})
    if groups:
        data["dependency_groups"] = groups
    return data


def dumps_manifest(package: Package) -> str:
    return dump_yaml(package_to_dict(package))


def loads_manifest(
    text: str | bytes,
    files: Iterable[PackageFile] = (),
    source: str = "",
    origin: str = MANIFEST_FILE,
) -> Package:
    try:
        data = parse_yaml(text, origin=origin)
    except (yaml.YAMLError, ValueError) as e:
        raise FormatError(f"{origin}: 清单格式错误: {e}") from e
    return package_from_dict(data, files=files, source=source, origin=origin)


def read_manifest(
    path: Path, files: Iterable[PackageFile] = (), source: str = "",
) -> Package:
    try:
        data = load_yaml(path)
    except (yaml.YAMLError, ValueError) as e:
        raise FormatError(f"{path}: 清单格式错误: {e}") from e
    return package_from_dict(data, files=files, source=source, origin=str(path))
