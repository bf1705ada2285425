"""Tests for the sizing closure: prune rule, traversal, dependents."""

from kegup.modules.kegup_deps import KegupDeps, Visit, prune_dependency


def _bottled(make_pkg, make_bottle, name, deps=(), outdated=True, **kw):
    latest = "2.0" if outdated else "1.0"
    return make_pkg(name, "1.0", latest, dependencies=tuple(deps), bottle=make_bottle(), **kw)


class TestPrunePredicate:
    def test_leaf_is_pruned(self, make_pkg, make_bottle):
        parent = make_pkg("x")
        assert prune_dependency(_bottled(make_pkg, make_bottle, "y"), parent) is Visit.PRUNE

    def test_not_outdated_is_pruned(self, make_pkg, make_bottle):
        dep = _bottled(make_pkg, make_bottle, "y", deps=["w"], outdated=False)
        assert prune_dependency(dep, make_pkg("x")) is Visit.PRUNE

    def test_unbottled_is_pruned(self, make_pkg):
        dep = make_pkg("y", "1.0", "2.0", dependencies=("w",))
        assert prune_dependency(dep, make_pkg("x")) is Visit.PRUNE

    def test_descend(self, make_pkg, make_bottle):
        dep = _bottled(make_pkg, make_bottle, "y", deps=["w"])
        assert prune_dependency(dep, make_pkg("x")) is Visit.DESCEND

    def test_decision_ignores_parent(self, make_pkg, make_bottle):
        dep = _bottled(make_pkg, make_bottle, "y", deps=["w"], outdated=False)
        parents = [make_pkg("p1"), make_pkg("p2", "1.0", "9.0", pinned=True)]
        assert {prune_dependency(dep, p) for p in parents} == {Visit.PRUNE}


class TestClosure:
    def test_scenario_c_only_target(self, make_pkg, make_bottle, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("y", "z"))
        y = _bottled(make_pkg, make_bottle, "y")
        z = make_pkg("z", "1.0", "1.0")
        report = KegupDeps(make_inventory(x, y, z), logger).sizing_closure([x])
        assert report.names() == ["x"]
        assert sorted(report.pruned) == ["y", "z"]

    def test_descends_into_qualifying_dependency(self, make_pkg, make_bottle, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("y",))
        y = _bottled(make_pkg, make_bottle, "y", deps=["w"])
        w = _bottled(make_pkg, make_bottle, "w", deps=["v"])
        v = _bottled(make_pkg, make_bottle, "v")
        report = KegupDeps(make_inventory(x, y, w, v), logger).closure([x])
        assert report.names() == ["x", "y", "w"]
        assert report.pruned == ["v"]

    def test_pruned_subtree_is_not_visited(self, make_pkg, make_bottle, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("y",))
        y = _bottled(make_pkg, make_bottle, "y", deps=["w"], outdated=False)
        w = _bottled(make_pkg, make_bottle, "w", deps=["v"])
        v = make_pkg("v")
        report = KegupDeps(make_inventory(x, y, w, v), logger).closure([x])
        assert report.names() == ["x"]
        assert "w" not in report.pruned

    def test_cycle_terminates(self, make_pkg, make_bottle, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("y",))
        y = _bottled(make_pkg, make_bottle, "y", deps=["z"])
        z = _bottled(make_pkg, make_bottle, "z", deps=["y", "x"])
        report = KegupDeps(make_inventory(x, y, z), logger).closure([x])
        names = report.names()
        assert sorted(names) == ["x", "y", "z"]
        assert len(names) == len(set(names))

    def test_shared_dependency_counted_once(self, make_pkg, make_bottle, make_inventory, logger):
        a = make_pkg("a", "1.0", "2.0", dependencies=("shared",))
        b = make_pkg("b", "1.0", "2.0", dependencies=("Shared",))
        shared = _bottled(make_pkg, make_bottle, "shared", deps=["leaf"])
        leaf = make_pkg("leaf")
        report = KegupDeps(make_inventory(a, b, shared, leaf), logger).closure([a, b])
        assert report.names() == ["a", "shared", "b"]

    def test_missing_dependency_recorded(self, make_pkg, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("ghost",))
        report = KegupDeps(make_inventory(x), logger).closure([x])
        assert report.names() == ["x"]
        assert report.missing == ["ghost"]

    def test_check_dependencies_off(self, make_pkg, make_bottle, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0", dependencies=("y",))
        y = _bottled(make_pkg, make_bottle, "y", deps=["w"])
        d = make_pkg("d", "1.0", "2.0", dependencies=("x",))
        report = KegupDeps(make_inventory(x, y, d), logger).sizing_closure([x], check_dependencies=False)
        assert report.names() == ["x"]


class TestDependents:
    def test_outdated_dependents_added(self, make_pkg, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0")
        d1 = make_pkg("d1", "1.0", "2.0", dependencies=("homebrew/core/x",))
        d2 = make_pkg("d2", "1.0", "1.0", dependencies=("x",))
        d3 = make_pkg("d3", "1.0", "2.0", dependencies=("x",), installed=False)
        report = KegupDeps(make_inventory(x, d1, d2, d3), logger).sizing_closure([x])
        assert report.names() == ["x", "d1"]
        assert report.dependents == ["d1"]

    def test_dependents_check_disabled(self, make_pkg, make_inventory, logger):
        x = make_pkg("x", "1.0", "2.0")
        d1 = make_pkg("d1", "1.0", "2.0", dependencies=("x",))
        report = KegupDeps(make_inventory(x, d1), logger).sizing_closure([x], check_dependents=False)
        assert report.names() == ["x"]
