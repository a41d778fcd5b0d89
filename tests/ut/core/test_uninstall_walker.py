"""卸载遍历器 / 依赖图单元测试"""

from __future__ import annotations

import pytest

from pkgcore.core.exceptions import PackageInUseError
from pkgcore.core.repo import InMemoryRepository
from pkgcore.core.walker import DependencyGraph, get_minimal_set, resolve_uninstall_plan


def _names(packages) -> list[str]:
    return [str(p.identity) for p in packages]


@pytest.fixture()
def chain(make_package) -> dict:
    """A -> B -> C，D -> C"""
    pkgs = {
        "A": make_package("A 1.0", ["B"]),
        "B": make_package("B 1.0", ["C [1.0,)"]),
        "C": make_package("C 1.0"),
        "D": make_package("D 1.0", ["C"]),
    }
    return pkgs


class TestDependencyGraph:
    def test_edges(self, chain: dict) -> None:
        graph = DependencyGraph(chain.values())
        assert _names(graph.dependencies(chain["A"])) == ["B 1.0.0"]
        assert sorted(_names(graph.dependents(chain["C"]))) == ["B 1.0.0", "D 1.0.0"]
        assert sorted(_names(graph.closure(chain["A"]))) == ["B 1.0.0", "C 1.0.0"]

    def test_edge_goes_to_highest_satisfying(self, make_package) -> None:
        a = make_package("A 1.0", ["B [1.0,2.0)"])
        b1, b15, b2 = make_package("B 1.0"), make_package("B 1.5"), make_package("B 2.0")
        graph = DependencyGraph([a, b1, b15, b2])
        assert graph.dependencies(a) == [b15]
        assert graph.dependents(b1) == []

    def test_unresolved_recorded(self, make_package) -> None:
        a = make_package("A 1.0", ["Missing"])
        graph = DependencyGraph([a])
        assert graph.unresolved == {a.identity: ["Missing"]}

    def test_minimal_set(self, chain: dict) -> None:
        assert _names(get_minimal_set(chain.values())) == ["A 1.0.0", "D 1.0.0"]


class TestUninstallWalker:
    def test_blocked_by_dependent(self, chain: dict) -> None:
        repo = InMemoryRepository(chain.values())
        with pytest.raises(PackageInUseError, match="仍被") as exc_info:
            resolve_uninstall_plan(chain["B"], repo)
        assert exc_info.value.dependents == ["A 1.0.0"]

    def test_force_remove_warns(self, chain: dict, caplog) -> None:
        repo = InMemoryRepository(chain.values())
        with caplog.at_level("WARNING"):
            plan = resolve_uninstall_plan(chain["B"], repo, force_remove=True)
        assert _names(plan.uninstalls) == ["B 1.0.0"]
        assert any("强制卸载" in r.getMessage() for r in caplog.records)

    def test_leaf_only_by_default(self, chain: dict) -> None:
        plan = resolve_uninstall_plan(chain["A"], InMemoryRepository(chain.values()))
        assert _names(plan.uninstalls) == ["A 1.0.0"]

    def test_remove_dependencies_keeps_shared(self, chain: dict) -> None:
        plan = resolve_uninstall_plan(
            chain["A"], InMemoryRepository(chain.values()), remove_dependencies=True,
        )
        # C 仍被 D 依赖
        assert _names(plan.uninstalls) == ["A 1.0.0", "B 1.0.0"]

    def test_remove_dependencies_full_chain(self, chain: dict) -> None:
        repo = InMemoryRepository([chain["A"], chain["B"], chain["C"]])
        plan = resolve_uninstall_plan(chain["A"], repo, remove_dependencies=True)
        assert _names(plan.uninstalls) == ["A 1.0.0", "B 1.0.0", "C 1.0.0"]

    def test_orphans_found_transitively_in_diamond(self, make_package) -> None:
        pkgs = [
            make_package("A 1.0", ["B", "C"]),
            make_package("B 1.0", ["D"]),
            make_package("C 1.0", ["D"]),
            make_package("D 1.0"),
        ]
        plan = resolve_uninstall_plan(pkgs[0], InMemoryRepository(pkgs), remove_dependencies=True)
        names = _names(plan.uninstalls)
        assert names[0] == "A 1.0.0"
        assert names[-1] == "D 1.0.0"
        assert sorted(names) == ["A 1.0.0", "B 1.0.0", "C 1.0.0", "D 1.0.0"]

    def test_keep_protects_dependency(self, chain: dict) -> None:
        repo = InMemoryRepository([chain["A"], chain["B"], chain["C"]])
        plan = resolve_uninstall_plan(chain["A"], repo, remove_dependencies=True, keep=["b"])
        assert _names(plan.uninstalls) == ["A 1.0.0"]

    def test_missing_dependency_warned(self, make_package, caplog) -> None:
        a = make_package("A 1.0", ["Gone"])
        with caplog.at_level("WARNING"):
            plan = resolve_uninstall_plan(a, InMemoryRepository([a]), remove_dependencies=True)
        assert _names(plan.uninstalls) == ["A 1.0.0"]
        assert any("Gone" in r.getMessage() for r in caplog.records)
