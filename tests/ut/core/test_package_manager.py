"""PackageManager 单元测试（本地存储为 tmp_path 下的真实目录）"""

from __future__ import annotations

import threading

import pytest

from pkgcore.core.events import PackageEvent
from pkgcore.core.exceptions import (
    AmbiguousPackageError,
    DependencyResolutionError,
    ExtractionError,
    PackageInUseError,
    PackageNotFoundError,
    PackageNotInstalledError,
)
from pkgcore.core.repo import InMemoryRepository
from pkgcore.core.version import SemanticVersion

V = SemanticVersion.parse


def _installed(pm) -> list[str]:
    return [str(p.identity) for p in pm.list_installed()]


class _Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def __call__(self, event) -> None:
        self.events.append((event.event.value, str(event.package.identity)))


@pytest.fixture()
def source(make_package) -> InMemoryRepository:
    return InMemoryRepository([
        make_package("Foo 1.0.0"),
        make_package("Bar 1.0.0", ["Foo [1.0.0,)"]),
        make_package("Lib 1.2.3"),
        make_package("Lib 1.2.9"),
        make_package("Lib 1.3.0"),
        make_package("Lib 2.0.0-beta"),
        make_package("App 1.0", ["Lib [1.2,2.0)"]),
    ])


class TestInstall:
    def test_install_with_dependencies(self, source, make_manager) -> None:
        pm = make_manager(source)
        plan = pm.install_package("Bar")
        assert [str(p.identity) for p in plan.installs] == ["Foo 1.0.0", "Bar 1.0.0"]
        assert _installed(pm) == ["Bar 1.0.0", "Foo 1.0.0"]

    def test_install_twice_is_noop(self, source, make_manager, store) -> None:
        pm = make_manager(source)
        pm.install_package("Foo", "1.0.0")
        before = sorted(p.name for p in store.root.rglob("*"))
        plan = pm.install_package("Foo", "1.0.0")
        assert plan.is_empty
        assert sorted(p.name for p in store.root.rglob("*")) == before

    def test_unknown_package(self, source, make_manager) -> None:
        with pytest.raises(PackageNotFoundError, match="Nope"):
            make_manager(source).install_package("Nope")

    def test_unknown_version(self, source, make_manager) -> None:
        with pytest.raises(PackageNotFoundError, match="Foo 9.0"):
            make_manager(source).install_package("Foo", "9.0")

    def test_explicit_prerelease_version(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "2.0.0-beta")
        assert _installed(pm) == ["Lib 2.0.0-beta"]

    def test_latest_excludes_prerelease(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib")
        assert _installed(pm) == ["Lib 1.3.0"]

    def test_failed_resolution_leaves_store_untouched(self, make_package, make_manager) -> None:
        repo = InMemoryRepository([make_package("A 1.0", ["B", "Missing"]), make_package("B 1.0")])
        pm = make_manager(repo)
        with pytest.raises(DependencyResolutionError):
            pm.install_package("A")
        assert _installed(pm) == []

    def test_execution_failure_keeps_earlier_packages(self, make_package, make_manager) -> None:
        broken = make_package("A 1.0", ["B"], files={"../escape": b"x"})
        pm = make_manager(InMemoryRepository([broken, make_package("B 1.0")]))
        with pytest.raises(ExtractionError):
            pm.install_package("A")
        assert _installed(pm) == ["B 1.0.0"]

    def test_events_order(self, source, make_manager) -> None:
        recorder = _Recorder()
        pm = make_manager(source, listeners=[recorder])
        pm.install_package("Bar")
        assert recorder.events == [
            ("package_installing", "Foo 1.0.0"),
            ("package_installed", "Foo 1.0.0"),
            ("package_installing", "Bar 1.0.0"),
            ("package_installed", "Bar 1.0.0"),
        ]

    def test_listener_error_propagates(self, source, make_manager) -> None:
        def reject(event) -> None:
            raise RuntimeError("拒绝")

        pm = make_manager(source, listeners=[reject])
        with pytest.raises(RuntimeError, match="拒绝"):
            pm.install_package("Foo")
        assert _installed(pm) == []

    def test_concurrent_install_same_package(self, source, make_manager) -> None:
        recorder = _Recorder()
        pm = make_manager(source, listeners=[recorder])
        package = source.find_package("Foo")
        threads = [threading.Thread(target=pm.extract_to_store, args=(package,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert recorder.events.count(("package_installed", "Foo 1.0.0")) == 1
        assert len(pm.locks) == 0


class TestUninstall:
    def test_blocked_by_dependent(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Bar")
        with pytest.raises(PackageInUseError, match="Bar 1.0.0"):
            pm.uninstall_package("Foo")
        assert _installed(pm) == ["Bar 1.0.0", "Foo 1.0.0"]

    def test_force_remove_leaves_dependent(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Bar")
        pm.uninstall_package("Foo", force_remove=True)
        assert _installed(pm) == ["Bar 1.0.0"]

    def test_remove_dependencies(self, source, make_manager) -> None:
        recorder = _Recorder()
        pm = make_manager(source, listeners=[recorder])
        pm.install_package("Bar")
        recorder.events.clear()
        pm.uninstall_package("Bar", remove_dependencies=True)
        assert _installed(pm) == []
        assert recorder.events == [
            ("package_uninstalling", "Bar 1.0.0"),
            ("package_uninstalled", "Bar 1.0.0"),
            ("package_uninstalling", "Foo 1.0.0"),
            ("package_uninstalled", "Foo 1.0.0"),
        ]

    def test_not_installed(self, source, make_manager) -> None:
        with pytest.raises(PackageNotInstalledError):
            make_manager(source).uninstall_package("Foo")

    def test_ambiguous_version(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.3")
        pm.install_package("Lib", "1.3.0")
        with pytest.raises(AmbiguousPackageError, match="1.2.3, 1.3.0"):
            pm.uninstall_package("Lib")
        pm.uninstall_package("Lib", "1.2.3")
        assert _installed(pm) == ["Lib 1.3.0"]


class TestUpdate:
    def test_safe_update_stays_in_minor(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.3")
        plan = pm.safe_update_package("Lib")
        assert plan is not None
        assert _installed(pm) == ["Lib 1.2.9"]
        assert [str(p.identity) for p in plan.uninstalls] == ["Lib 1.2.3"]

    def test_safe_update_never_crosses_minor(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.9")
        assert pm.safe_update_package("Lib") is None
        assert _installed(pm) == ["Lib 1.2.9"]

    def test_update_to_latest(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.3")
        pm.update_package("Lib")
        assert _installed(pm) == ["Lib 1.3.0"]

    def test_update_to_explicit_version(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.3")
        pm.update_package("Lib", version="1.2.9")
        assert _installed(pm) == ["Lib 1.2.9"]

    def test_update_blocked_by_installed_dependent(self, make_package, make_manager) -> None:
        repo = InMemoryRepository([
            make_package("App 1.0", ["Lib [1.0]"]),
            make_package("Lib 1.0"),
            make_package("Lib 2.0"),
        ])
        pm = make_manager(repo)
        pm.install_package("App")
        with pytest.raises(DependencyResolutionError, match="App 1.0.0"):
            pm.update_package("Lib")
        assert _installed(pm) == ["App 1.0.0", "Lib 1.0.0"]

    def test_update_not_installed(self, source, make_manager) -> None:
        with pytest.raises(PackageNotInstalledError):
            make_manager(source).update_package("Lib")

    def test_update_repository_limits_candidates(self, source, make_package, make_manager) -> None:
        active = InMemoryRepository([make_package("Lib 1.2.3"), make_package("Lib 1.2.9")], name="active")
        pm = make_manager(source, update_repository=active)
        pm.install_package("Lib", "1.2.3")
        pm.update_package("Lib")
        assert _installed(pm) == ["Lib 1.2.9"]

    def test_get_updates(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("Lib", "1.2.3")
        pm.install_package("Foo")
        assert [str(p.identity) for p in pm.get_updates()] == ["Lib 1.3.0"]
        all_versions = pm.get_updates(include_prerelease=True, include_all_versions=True)
        assert [str(p.version) for p in all_versions] == ["2.0.0-beta", "1.3.0", "1.2.9"]

    def test_event_enum_values(self) -> None:
        assert PackageEvent.REFERENCE_REMOVING.value == "package_reference_removing"
