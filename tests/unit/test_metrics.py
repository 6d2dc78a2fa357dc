"""Unit tests for metric calculation and upward propagation."""

import pytest

from mxp.errors import InvalidOperationError
from mxp.metrics import (
    calculate_all_metrics,
    calculate_all_node_metrics,
    compact_merge_metrics,
    get_delta_with_all_metrics_recalculated,
    get_delta_with_updated_node_metrics,
    get_reference_index,
    merge_metrics,
)
from mxp.models import MetricUpdate, TreeNode, TreeNodeSetDelta


def _chain():
    """root -> mid -> leaf, all readiness 0, leaf unset."""
    return {
        "root": TreeNode(id="root", type="map", children_ids=("mid",), calculated_metrics={"readinessLevel": 0}),
        "mid": TreeNode(
            id="mid", type="map", parent_id="root", children_ids=("leaf",), calculated_metrics={"readinessLevel": 0}
        ),
        "leaf": TreeNode(id="leaf", type="map", parent_id="mid", calculated_metrics={"readinessLevel": 0}),
    }


class TestCalculationRules:
    """Test cases for the readiness level rules."""

    def test_set_value_wins(self):
        assert calculate_all_metrics({"readinessLevel": 4}, [{"readinessLevel": 1}], {"readinessLevel": 2}) == {
            "readinessLevel": 4
        }

    def test_referenced_value_beats_children(self):
        result = calculate_all_metrics({}, [{"readinessLevel": 1}], {"readinessLevel": 6})
        assert result["readinessLevel"] == 6

    def test_minimum_over_children(self):
        result = calculate_all_metrics({}, [{"readinessLevel": 3}, {"readinessLevel": 5}], None)
        assert result["readinessLevel"] == 3

    def test_leaf_default_is_zero(self):
        assert calculate_all_metrics({}, [], None) == {"readinessLevel": 0}

    def test_target_readiness_only_when_set(self):
        assert "targetReadinessLevel" not in calculate_all_metrics({}, [{"targetReadinessLevel": 5}], None)
        assert calculate_all_metrics({"targetReadinessLevel": 5}, [], None)["targetReadinessLevel"] == 5


class TestMergeMetrics:
    """Test cases for merging set-metric updates."""

    def test_keep_clear_set(self):
        merged = merge_metrics(
            {"readinessLevel": 2, "targetReadinessLevel": 5},
            {"readinessLevel": MetricUpdate.clear(), "targetReadinessLevel": MetricUpdate.keep()},
        )
        assert merged == {"readinessLevel": None, "targetReadinessLevel": 5}

    def test_compact_merge_drops_cleared(self):
        assert compact_merge_metrics({"readinessLevel": 2}, {"readinessLevel": None}) == {}

    def test_raw_values_accepted(self):
        assert compact_merge_metrics({}, {"readinessLevel": 3}) == {"readinessLevel": 3}

    def test_unknown_metric_rejected(self):
        with pytest.raises(InvalidOperationError, match="Unknown metric"):
            merge_metrics({}, {"velocity": MetricUpdate.set(1)})


class TestPropagation:
    """Test cases for bottom-up propagation."""

    def test_change_propagates_to_root(self):
        nodes = _chain()
        leaf = nodes["leaf"].replace(set_metrics={"readinessLevel": 3})
        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(updated={"leaf": leaf}), "leaf")

        assert delta.updated["leaf"].calculated_metrics["readinessLevel"] == 3
        assert delta.updated["mid"].calculated_metrics["readinessLevel"] == 3
        assert delta.updated["root"].calculated_metrics["readinessLevel"] == 3

    def test_first_node_recorded_even_when_unchanged(self):
        nodes = _chain()
        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(), "leaf")
        assert set(delta.updated) == {"leaf"}

    def test_propagation_stops_at_unchanged_ancestor(self):
        nodes = _chain()
        nodes["root"] = nodes["root"].replace(children_ids=("mid", "other"))
        nodes["other"] = TreeNode(id="other", type="map", parent_id="root", calculated_metrics={"readinessLevel": 0})
        leaf = nodes["leaf"].replace(set_metrics={"readinessLevel": 4})

        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(updated={"leaf": leaf}), "leaf")

        assert delta.updated["mid"].calculated_metrics["readinessLevel"] == 4
        # root stays at min(4, 0) == 0, so it is recomputed but not recorded
        assert "root" not in delta.updated

    def test_input_delta_not_mutated(self):
        nodes = _chain()
        original = TreeNodeSetDelta()
        get_delta_with_updated_node_metrics(nodes, original, "leaf")
        assert original.is_empty()

    def test_parent_cycle_terminates(self):
        nodes = {
            "a": TreeNode(id="a", type="map", parent_id="b", children_ids=("b",), set_metrics={"readinessLevel": 1}),
            "b": TreeNode(id="b", type="map", parent_id="a", children_ids=("a",)),
        }
        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(), "a")
        assert "a" in delta.updated

    def test_change_reaches_referencing_nodes(self):
        nodes = _chain()
        nodes["wr"] = TreeNode(id="wr", type="waypoint", children_ids=("w",), calculated_metrics={"readinessLevel": 0})
        nodes["w"] = TreeNode(
            id="w",
            type="waypoint",
            parent_id="wr",
            metadata={"referenceMapNodeId": "mid"},
            calculated_metrics={"readinessLevel": 0},
        )
        leaf = nodes["leaf"].replace(set_metrics={"readinessLevel": 5})

        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(updated={"leaf": leaf}), "leaf")

        assert delta.updated["w"].calculated_metrics == {"readinessLevel": 5}
        assert delta.updated["wr"].calculated_metrics == {"readinessLevel": 5}

    def test_unchanged_node_leaves_referencing_nodes_alone(self):
        nodes = _chain()
        nodes["w"] = TreeNode(
            id="w", type="waypoint", metadata={"referenceMapNodeId": "leaf"}, calculated_metrics={"readinessLevel": 0}
        )
        delta = get_delta_with_updated_node_metrics(nodes, TreeNodeSetDelta(), "leaf")
        assert "w" not in delta.updated

    def test_reference_index_skips_removed_nodes(self):
        nodes = {
            "m": TreeNode(id="m", type="map"),
            "w1": TreeNode(id="w1", type="waypoint", metadata={"referenceMapNodeId": "m"}),
            "w2": TreeNode(id="w2", type="waypoint", metadata={"referenceMapNodeId": "m"}),
        }
        delta = TreeNodeSetDelta(removed={"w2": nodes["w2"]})
        assert get_reference_index(nodes) == {"m": ["w1", "w2"]}
        assert get_reference_index(nodes, delta) == {"m": ["w1"]}


class TestFullRecalculation:
    """Test cases for recalculating every node from scratch."""

    def test_recalculates_stale_values(self):
        nodes = _chain()
        nodes["leaf"] = nodes["leaf"].replace(set_metrics={"readinessLevel": 2})
        results = calculate_all_node_metrics(nodes)
        assert results["root"]["readinessLevel"] == 2

    def test_reference_resolved_before_dependent(self):
        nodes = {
            "m": TreeNode(id="m", type="map", set_metrics={"readinessLevel": 7}),
            "w": TreeNode(id="w", type="waypoint", metadata={"referenceMapNodeId": "m"}),
        }
        results = calculate_all_node_metrics(nodes)
        assert results["w"]["readinessLevel"] == 7

    def test_draft_children_ignored(self):
        nodes = {
            "r": TreeNode(id="r", type="map", children_ids=("a", "b")),
            "a": TreeNode(id="a", type="map", parent_id="r", set_metrics={"readinessLevel": 1}, node_state="draft"),
            "b": TreeNode(id="b", type="map", parent_id="r", set_metrics={"readinessLevel": 4}),
        }
        assert calculate_all_node_metrics(nodes)["r"]["readinessLevel"] == 4

    def test_consistent_set_gives_empty_delta(self):
        assert get_delta_with_all_metrics_recalculated(_chain()).is_empty()
