"""Unit tests for GraphBuilder."""

import pytest
from conftest import ids, names

from stackdeploy.dependency.builder import GraphBuilder, node_id
from stackdeploy.models.project import ProfileConfig
from stackdeploy.utils.exceptions import CycleDetectedError, SourceResolutionError


class TestNodeId:
    """Test node id derivation."""

    def test_stable(self):
        assert node_id("local:/projects/a") == node_id("local:/projects/a")

    def test_length(self):
        assert len(node_id("local:/projects/a")) == 16

    def test_profile_changes_identity(self):
        assert node_id("local:/projects/a", "dev") != node_id("local:/projects/a")

    def test_source_changes_identity(self):
        assert node_id("local:/projects/a") != node_id("local:/projects/b")


class TestGraphBuilder:
    """Test graph construction over fake sources."""

    def test_single_project(self, tree):
        tree.add("A")

        graph = tree.build("A")

        assert len(graph) == 1
        assert graph.root_node.name == "A"
        assert graph.root_node.fingerprint == "fp-A"

    def test_children_in_declaration_order(self, sample_graph):
        root = sample_graph.root_node

        assert names(sample_graph, root.children) == ["B", "C"]
        assert names(sample_graph, sample_graph.get(ids(sample_graph, "B")[0]).children) == ["D"]

    def test_node_carries_resolution(self, tree, sample_graph):
        (b_id,) = ids(sample_graph, "B")
        b = sample_graph.get(b_id)

        assert b.resolved_path == tree.path("B")
        assert b.fingerprint == "fp-B"
        assert b.config.name == "B"

    def test_ids_stable_across_builds(self, tree, sample_graph):
        rebuilt = tree.build("A")

        assert set(rebuilt.nodes) == set(sample_graph.nodes)

    def test_diamond_resolves_shared_node_once(self, tree):
        tree.add("A", ["B", "C"])
        tree.add("B", ["D"])
        tree.add("C", ["D"])
        tree.add("D")

        graph = tree.build("A")

        assert len(graph) == 4
        assert len(graph.find_by_name("D")) == 1
        assert tree.resolver.calls.count(tree.path("D")) == 1
        assert [p for p, _ in tree.loader.calls].count(tree.path("D")) == 1

        (d_id,) = ids(graph, "D")
        assert sorted(names(graph, graph.parents(d_id))) == ["B", "C"]

    def test_disabled_dependency_excluded(self, tree):
        tree.add("A", ["B", tree.dependency("C", disabled=True)])
        tree.add("B")
        tree.add("C")

        graph = tree.build("A")

        assert sorted(node.name for node in graph.nodes.values()) == ["A", "B"]
        assert tree.path("C") not in tree.resolver.calls

    def test_same_source_different_profiles_are_distinct(self, tree):
        tree.add("A", [tree.dependency("db"), tree.dependency("db-dev", "db", profile="dev")])
        tree.add("db", profiles=[ProfileConfig(name="dev")])

        graph = tree.build("A")

        assert len(graph) == 3
        assert graph.get(ids(graph, "db-dev")[0]).config.active_profile == "dev"
        # fetched once, loaded once per profile
        assert tree.resolver.calls.count(tree.path("db")) == 1

    def test_profile_passed_to_loader(self, tree):
        tree.add("A", [tree.dependency("B", profile="dev")])
        tree.add("B", profiles=[ProfileConfig(name="dev")])

        tree.build("A")

        assert (tree.path("B"), "dev") in tree.loader.calls

    def test_resolution_memo_shared_across_builds(self, tree):
        tree.add("A", ["B"])
        tree.add("B")
        builder = GraphBuilder(tree.loader, tree.resolver)

        builder.build(tree.loader.configs[tree.path("A")], tree.path("A"))
        builder.build(tree.loader.configs[tree.path("A")], tree.path("A"))

        assert tree.resolver.calls.count(tree.path("B")) == 1


class TestCycles:
    """Test cycle detection and tolerance."""

    def test_direct_cycle_raises(self, tree):
        tree.add("A", ["B"])
        tree.add("B", ["A"])

        with pytest.raises(CycleDetectedError) as exc_info:
            tree.build("A")

        assert exc_info.value.path == ["A", "B", "A"]
        assert "A -> B -> A" in str(exc_info.value)

    def test_self_cycle_raises(self, tree):
        tree.add("A", ["A"])

        with pytest.raises(CycleDetectedError):
            tree.build("A")

    def test_deep_cycle_path(self, tree):
        tree.add("A", ["B"])
        tree.add("B", ["C"])
        tree.add("C", ["B"])

        with pytest.raises(CycleDetectedError) as exc_info:
            tree.build("A")

        assert exc_info.value.path == ["B", "C", "B"]

    def test_cycle_tolerated_records_back_edge(self, tree):
        tree.add("A", ["B"])
        tree.add("B", ["A"])

        graph = tree.build("A", allow_cycles=True)

        a_id, b_id = ids(graph, "A", "B")
        assert len(graph) == 2
        assert graph.back_edges == {(b_id, a_id)}
        assert graph.children(b_id) == []
        assert graph.children(b_id, include_back_edges=True) == [a_id]

    def test_shared_node_is_not_a_cycle(self, diamond_graph):
        assert diamond_graph.back_edges == set()


class TestResolutionFailures:
    """Test aggregated resolution failures."""

    def test_single_failure(self, tree):
        tree.add("A", ["B"])
        tree.resolver.failing.add(tree.path("B"))

        with pytest.raises(SourceResolutionError) as exc_info:
            tree.build("A")

        assert list(exc_info.value.failures) == ["A -> B"]

    def test_sibling_branches_all_reported(self, tree):
        tree.add("A", ["B", "C", "E"])
        tree.add("B", ["D"])
        tree.add("C")
        tree.add("D")
        tree.add("E")
        tree.resolver.failing.update({tree.path("C"), tree.path("D")})

        with pytest.raises(SourceResolutionError) as exc_info:
            tree.build("A")

        assert set(exc_info.value.failures) == {"A -> C", "A -> B -> D"}
        # the healthy sibling was still resolved
        assert tree.path("E") in tree.resolver.calls

    def test_failed_branch_not_descended(self, tree):
        tree.add("A", ["B"])
        tree.add("B", ["D"])
        tree.add("D")
        tree.resolver.failing.add(tree.path("B"))

        with pytest.raises(SourceResolutionError):
            tree.build("A")

        assert tree.path("D") not in tree.resolver.calls

    def test_config_load_failure_is_aggregated(self, tree):
        tree.add("A", ["B", "C"])
        tree.add("C")
        # B has no project file registered

        with pytest.raises(SourceResolutionError) as exc_info:
            tree.build("A")

        assert list(exc_info.value.failures) == ["A -> B"]

    def test_unknown_profile_is_aggregated(self, tree):
        tree.add("A", [tree.dependency("B", profile="missing")])
        tree.add("B")

        with pytest.raises(SourceResolutionError) as exc_info:
            tree.build("A")

        assert "profile 'missing' not found" in str(exc_info.value.failures["A -> B"])
