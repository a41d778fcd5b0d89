"""数据模型 / 清单 / 目标框架单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from pkgcore.core.exceptions import FormatError
from pkgcore.core.frameworks import FrameworkName, parse_framework, select_compatible
from pkgcore.core.manifest import dumps_manifest, loads_manifest, read_manifest
from pkgcore.core.models import (
    InstallPlan,
    PackageAction,
    PackageIdentity,
    PackageOperation,
)
from pkgcore.core.version import SemanticVersion


class TestPackageIdentity:
    def test_id_case_insensitive(self) -> None:
        assert PackageIdentity("Foo", "1.0") == PackageIdentity("foo", "1.0.0")
        assert len({PackageIdentity("Foo", "1.0"), PackageIdentity("FOO", "1.0")}) == 1

    def test_preserves_original_case(self) -> None:
        assert PackageIdentity("Foo.Core", "1.0").full_name == "Foo.Core 1.0.0"

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ValueError, match="不能为空"):
            PackageIdentity(" ", "1.0")

    def test_ordering(self) -> None:
        ids = [PackageIdentity("b", "1.0"), PackageIdentity("a", "2.0"), PackageIdentity("a", "1.0")]
        assert [str(i) for i in sorted(ids)] == ["a 1.0.0", "a 2.0.0", "b 1.0.0"]


class TestPackage:
    def test_equality_by_identity(self, make_package) -> None:
        a = make_package("Foo 1.0", ["Bar"])
        b = make_package("foo 1.0.0")
        assert a == b
        assert hash(a) == hash(b)

    def test_dependencies_without_framework_merges_groups(self, make_package) -> None:
        pkg = make_package(
            "Foo 1.0", ["Common"],
            groups={"net40": ["Old"], "net45": ["New", "Common [2.0]"]},
        )
        ids = [d.id for d in pkg.dependencies_for(None)]
        assert ids == ["Common", "Old", "New"]

    def test_dependencies_for_framework(self, make_package) -> None:
        pkg = make_package("Foo 1.0", ["Common"], groups={"net40": ["Old"], "net45": ["New"]})
        assert [d.id for d in pkg.dependencies_for("net451")] == ["New"]
        assert [d.id for d in pkg.dependencies_for("net40")] == ["Old"]
        # 不兼容时退回到不区分框架的分组
        assert [d.id for d in pkg.dependencies_for("netstandard2.0")] == ["Common"]

    def test_satellite_detection(self, make_package) -> None:
        sat = make_package("Foo.zh-CN 1.0", ["Foo [1.0]"], language="zh-CN")
        assert sat.is_satellite()
        assert sat.satellite_runtime_id == "Foo"

    def test_language_without_runtime_dependency_is_not_satellite(self, make_package) -> None:
        assert not make_package("Foo.zh-CN 1.0", language="zh-CN").is_satellite()
        assert not make_package("Foo.Fr 1.0", ["Foo"], language="de").is_satellite()
        assert not make_package("Foo 1.0", ["Bar"]).is_satellite()


class TestInstallPlan:
    def test_opposite_operations_cancel(self, make_package) -> None:
        a = make_package("A 1.0")
        b = make_package("B 1.0")
        plan = InstallPlan([
            PackageOperation(PackageAction.UNINSTALL, a),
            PackageOperation(PackageAction.INSTALL, b),
            PackageOperation(PackageAction.INSTALL, a),
        ])
        assert [str(op) for op in plan] == ["install B 1.0.0"]

    def test_same_action_kept(self, make_package) -> None:
        a = make_package("A 1.0")
        plan = InstallPlan([PackageOperation(PackageAction.INSTALL, a)] * 2)
        assert len(plan) == 2

    def test_empty(self) -> None:
        plan = InstallPlan()
        assert plan.is_empty
        assert plan.installs == [] and plan.uninstalls == []


class TestFrameworks:
    @pytest.mark.parametrize(("text", "ident", "version"), [
        ("net45", "net", (4, 5)),
        ("net4.5", "net", (4, 5)),
        ("netstandard2.0", "netstandard", (2, 0)),
        (".NETFramework,Version=v4.5", "net", (4, 5)),
        ("native", "native", ()),
    ])
    def test_parse(self, text: str, ident: str, version: tuple[int, ...]) -> None:
        assert FrameworkName.parse(text) == FrameworkName(ident, version)

    def test_parse_invalid(self) -> None:
        with pytest.raises(FormatError, match="无效的目标框架"):
            FrameworkName.parse("4.5net")

    def test_parse_framework_empty(self) -> None:
        assert parse_framework(None) is None
        assert parse_framework("  ") is None

    def test_select_highest_compatible(self) -> None:
        groups = [("net20", "a"), ("net40", "b"), ("net45", "c"), (None, "any")]
        assert select_compatible("net40", groups) == "b"
        assert select_compatible("net48", groups) == "c"
        assert select_compatible("net11", groups) == "any"
        assert select_compatible("netstandard2.0", [("net45", "c")]) is None
        assert select_compatible(None, groups) is None


class TestManifest:
    def test_roundtrip_through_yaml(self, make_package) -> None:
        pkg = make_package(
            "Foo.Core 1.2.0-beta", ["Bar [1.0,2.0)", "Baz"],
            groups={"net45": ["Qux 3.0"]}, description="核心库",
        )
        loaded = loads_manifest(dumps_manifest(pkg))
        assert loaded.identity == pkg.identity
        assert loaded.description == "核心库"
        assert [str(d) for d in loaded.dependencies_for("net45")] == ["Qux (= 3.0.0)"]
        assert [str(d) for d in loaded.dependencies_for(None)] == [
            "Bar (>= 1.0.0 && < 2.0.0)", "Baz", "Qux (= 3.0.0)",
        ]

    def test_plain_version_dependency_is_exact(self) -> None:
        pkg = loads_manifest("id: Foo\nversion: '1.0'\ndependencies:\n  - id: Bar\n    version: '1.5'\n")
        dep = pkg.find_dependency("bar")
        assert dep is not None and dep.version_spec is not None
        assert dep.version_spec.is_exact
        assert pkg.version == SemanticVersion.parse("1.0")

    def test_string_dependency_shorthand(self) -> None:
        pkg = loads_manifest("id: Foo\nversion: '1.0'\ndependencies: [Bar]\n")
        assert [d.id for d in pkg.dependencies_for()] == ["Bar"]

    @pytest.mark.parametrize(("text", "message"), [
        ("version: '1.0'\n", "缺少字段 'id'"),
        ("id: Foo\n", "缺少字段 'version'"),
        ("id: 'Foo Bar'\nversion: '1.0'\n", "无效的包 id"),
        ("id: Foo\nversion: 'x'\n", "无效的版本号"),
        ("id: Foo\nversion: '1.0'\ndependencies: Bar\n", "必须是列表"),
        ("- a\n- b\n", "清单格式错误"),
        ("id: [unclosed\n", "清单格式错误"),
    ])
    def test_invalid_manifest(self, text: str, message: str) -> None:
        with pytest.raises(FormatError, match=message):
            loads_manifest(text)

    @pytest.mark.parametrize("text", [
        "id: Foo\nversion: 1.10\n",
        "id: Foo\nversion: '1.0'\ndependencies:\n  - id: Bar\n    version: 2.10\n",
        "id: Foo\nversion: true\n",
    ])
    def test_unquoted_float_version_rejected(self, text: str) -> None:
        with pytest.raises(FormatError, match="请给版本号加引号"):
            loads_manifest(text)

    def test_quoted_and_integer_versions(self) -> None:
        pkg = loads_manifest("id: Foo\nversion: '1.10'\ndependencies:\n  - id: Bar\n    version: 2\n")
        assert str(pkg.version) == "1.10.0"
        assert str(pkg.find_dependency("Bar").version_spec) == "[2.0.0]"

    def test_read_manifest_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "package.yml"
        path.write_text("id: Foo\nversion: 2.0.1\n", encoding="utf-8")
        assert str(read_manifest(path).identity) == "Foo 2.0.1"
