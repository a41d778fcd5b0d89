"""RestoreOrchestrator 单元测试"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from pkgcore.core.exceptions import RestoreConsentError
from pkgcore.core.models import PackageIdentity
from pkgcore.core.reference_file import PackageReference, PackageReferenceFile
from pkgcore.core.repo import InMemoryRepository
from pkgcore.core.restore import RestoreOrchestrator, RestoreOutcome


def _ids(*items: str) -> list[PackageIdentity]:
    return [PackageIdentity(*i.split()) for i in items]


class _Recorder:
    def __init__(self) -> None:
        self.installed: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, event) -> None:
        if event.event.value == "package_installed":
            with self._lock:
                self.installed.append(str(event.package.identity))


@pytest.fixture()
def source(make_package) -> InMemoryRepository:
    return InMemoryRepository([
        make_package("A 1.0.0"),
        make_package("B 2.0.0", ["A [1.0.0]"]),
        make_package("C 1.0.0"),
        make_package("Foo 1.0.0"),
        make_package("Foo.zh-CN 1.0.0", ["Foo [1.0.0]"], language="zh-CN"),
    ])


class TestRestore:
    def test_only_missing_packages_installed(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("A", "1.0.0")
        result = RestoreOrchestrator(pm).restore(_ids("A 1.0.0", "B 2.0.0"))
        assert [str(i) for i in result.skipped] == ["A 1.0.0"]
        assert [str(i) for i in result.installed] == ["B 2.0.0"]
        assert result.success

    def test_dependencies_not_followed(self, source, make_manager) -> None:
        pm = make_manager(source)
        result = RestoreOrchestrator(pm).restore(_ids("B 2.0.0"))
        assert result.success
        assert [str(p.identity) for p in pm.list_installed()] == ["B 2.0.0"]

    def test_results_in_input_order(self, source, make_manager) -> None:
        pm = make_manager(source)
        result = RestoreOrchestrator(pm, max_workers=4).restore(_ids("C 1.0.0", "A 1.0.0", "B 2.0.0", "A 1.0.0"))
        assert [str(r.identity) for r in result.results] == ["C 1.0.0", "A 1.0.0", "B 2.0.0"]
        assert all(r.outcome is RestoreOutcome.INSTALLED for r in result.results)

    @pytest.mark.parametrize("disable_parallel", [True, False])
    def test_satellite_installed_after_runtime(self, source, make_manager, disable_parallel: bool) -> None:
        recorder = _Recorder()
        pm = make_manager(source, listeners=[recorder])
        orchestrator = RestoreOrchestrator(pm, disable_parallel=disable_parallel)
        result = orchestrator.restore(_ids("Foo.zh-CN 1.0.0", "Foo 1.0.0", "C 1.0.0"))
        assert result.success
        assert recorder.installed[-1] == "Foo.zh-CN 1.0.0"
        assert [str(r.identity) for r in result.results] == ["Foo.zh-CN 1.0.0", "Foo 1.0.0", "C 1.0.0"]

    def test_failure_recorded_not_raised(self, source, make_manager) -> None:
        pm = make_manager(source)
        result = RestoreOrchestrator(pm).restore(_ids("Missing 1.0.0", "C 1.0.0"))
        assert not result.success
        assert [str(i) for i in result.failed] == ["Missing 1.0.0"]
        assert [str(i) for i in result.installed] == ["C 1.0.0"]
        assert "找不到包" in result.results[0].message

    def test_cancel_before_start(self, source, make_manager) -> None:
        pm = make_manager(source)
        cancel = threading.Event()
        cancel.set()
        result = RestoreOrchestrator(pm, cancel_event=cancel).restore(_ids("A 1.0.0", "C 1.0.0"))
        assert [str(i) for i in result.cancelled] == ["A 1.0.0", "C 1.0.0"]
        assert not result.success
        assert pm.list_installed() == []

    def test_cancel_mid_restore_finishes_current_package(self, source, make_manager) -> None:
        cancel = threading.Event()

        def stop_after_first(event) -> None:
            if event.event.value == "package_installed":
                cancel.set()

        pm = make_manager(source, listeners=[stop_after_first])
        orchestrator = RestoreOrchestrator(pm, disable_parallel=True, cancel_event=cancel)
        result = orchestrator.restore(_ids("A 1.0.0", "C 1.0.0"))
        assert [str(i) for i in result.installed] == ["A 1.0.0"]
        assert [str(i) for i in result.cancelled] == ["C 1.0.0"]


class TestConsent:
    def test_consent_required(self, source, make_manager) -> None:
        pm = make_manager(source)
        orchestrator = RestoreOrchestrator(pm, require_consent=True)
        with pytest.raises(RestoreConsentError, match="PKGCORE_PACKAGE_RESTORE"):
            orchestrator.restore(_ids("A 1.0.0"))
        assert pm.list_installed() == []

    def test_consent_granted(self, source, make_manager) -> None:
        pm = make_manager(source)
        orchestrator = RestoreOrchestrator(pm, require_consent=True, consent_granted=True)
        assert orchestrator.restore(_ids("A 1.0.0")).success

    def test_nothing_missing_needs_no_consent(self, source, make_manager) -> None:
        pm = make_manager(source)
        pm.install_package("A")
        result = RestoreOrchestrator(pm, require_consent=True).restore(_ids("A 1.0.0"))
        assert [str(i) for i in result.skipped] == ["A 1.0.0"]

    def test_opt_out_message_logged_once(self, source, make_manager, caplog) -> None:
        pm = make_manager(source)
        orchestrator = RestoreOrchestrator(pm)
        with caplog.at_level("INFO"):
            orchestrator.restore(_ids("A 1.0.0"))
            orchestrator.restore(_ids("C 1.0.0"))
        assert sum("包恢复已启用" in r.getMessage() for r in caplog.records) == 1


class TestRestoreFiles:
    def test_restore_from_reference_files(self, tmp_path: Path, source, make_manager) -> None:
        one = PackageReferenceFile(tmp_path / "one" / "packages.config")
        two = PackageReferenceFile(tmp_path / "two" / "packages.config")
        one.save([PackageReference(PackageIdentity("A", "1.0.0")), PackageReference(PackageIdentity("C", "1.0.0"))])
        two.save([PackageReference(PackageIdentity("C", "1.0.0"), is_direct=False)])

        pm = make_manager(source)
        result = RestoreOrchestrator(pm).restore_files([one.path, two.path, tmp_path / "absent.config"])
        assert [str(r.identity) for r in result.results] == ["A 1.0.0", "C 1.0.0"]
        assert result.success
