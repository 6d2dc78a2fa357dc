"""Metrics calculation and bottom-up propagation.

Every metric has a calculation rule taking the node's own set value, the
calculated values of its active children, and the calculated value of the
node it references (if any). ``calculatedMetrics`` is always derived from
these rules and is never set by hand.

Propagation walks upward from a changed node. The first node is always
recomputed; every later ancestor stops the walk as soon as its recomputed
metrics equal the stored ones, which keeps a mutation's cost proportional to
the depth of the tree. A node whose metrics change also sends the walk into
every node referencing it.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .errors import InvalidOperationError
from .models import Metrics, MetricUpdate, TreeNode, TreeNodeSet, TreeNodeSetDelta
from .node_set import get_active_children, get_node, get_referenced_node, lookup_node


@dataclass(slots=True, frozen=True)
class CalculatableMetric:
    """Calculation rule for one metric."""

    name: str
    calculate: Callable[[Optional[int], List[int], Optional[int]], Optional[int]]
    default: Optional[int] = None


def _calculate_readiness_level(
    set_value: Optional[int],
    child_values: List[int],
    referenced_value: Optional[int],
) -> int:
    if set_value is not None:
        return set_value
    if referenced_value is not None:
        return referenced_value
    values = [value for value in child_values if value is not None]
    return min(values) if values else 0


def _calculate_target_readiness_level(
    set_value: Optional[int],
    child_values: List[int],
    referenced_value: Optional[int],
) -> Optional[int]:
    return set_value


CALCULATABLE_METRICS: Dict[str, CalculatableMetric] = {
    "readinessLevel": CalculatableMetric("readinessLevel", _calculate_readiness_level, default=0),
    "targetReadinessLevel": CalculatableMetric("targetReadinessLevel", _calculate_target_readiness_level),
}

METRIC_KEYS = tuple(CALCULATABLE_METRICS)


# ---------------------------------------------------------------------------
# Set-metric merging
# ---------------------------------------------------------------------------


def merge_metrics(
    current: Optional[Mapping[str, Optional[int]]],
    updates: Optional[Mapping[str, MetricUpdate]],
) -> Dict[str, Optional[int]]:
    """Apply ``updates`` over ``current``; cleared metrics come back as None."""
    merged: Dict[str, Optional[int]] = dict(current or {})
    for name, update in (updates or {}).items():
        if name not in CALCULATABLE_METRICS:
            raise InvalidOperationError(f"Unknown metric: {name}")
        merged[name] = MetricUpdate.from_raw(update).apply(merged.get(name))
    return merged


def compact_metrics(metrics: Mapping[str, Optional[int]]) -> Metrics:
    return {name: value for name, value in metrics.items() if value is not None}


def compact_merge_metrics(
    current: Optional[Mapping[str, Optional[int]]],
    updates: Optional[Mapping[str, MetricUpdate]],
) -> Metrics:
    return compact_metrics(merge_metrics(current, updates))


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def calculate_metric(
    name: str,
    set_metrics: Mapping[str, int],
    child_values: List[int],
    referenced_value: Optional[int],
) -> Optional[int]:
    metric = CALCULATABLE_METRICS[name]
    return metric.calculate(set_metrics.get(name), child_values, referenced_value)


def calculate_all_metrics(
    set_metrics: Mapping[str, int],
    children_metrics: Iterable[Mapping[str, int]],
    referenced_metrics: Optional[Mapping[str, int]],
) -> Metrics:
    children_metrics = list(children_metrics)
    result = {
        name: calculate_metric(
            name,
            set_metrics,
            [child.get(name) for child in children_metrics],
            referenced_metrics.get(name) if referenced_metrics else None,
        )
        for name in METRIC_KEYS
    }
    return compact_metrics(result)


def calculate_all_metrics_from_node(
    node: TreeNode,
    active_children: Iterable[TreeNode],
    referenced_node: Optional[TreeNode],
) -> Metrics:
    return calculate_all_metrics(
        node.set_metrics,
        [child.calculated_metrics for child in active_children],
        referenced_node.calculated_metrics if referenced_node else None,
    )


def calculate_all_metrics_from_node_id(nodes: TreeNodeSet, node_id: str) -> Metrics:
    node = get_node(nodes, node_id)
    return calculate_all_metrics_from_node(
        node,
        get_active_children(nodes, node_id),
        get_referenced_node(nodes, node),
    )


def metrics_are_same(a: Mapping[str, int], b: Mapping[str, int]) -> bool:
    return dict(a) == dict(b)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------


def get_reference_index(nodes: TreeNodeSet, delta: Optional[TreeNodeSetDelta] = None) -> Dict[str, List[str]]:
    """Map each referenced id to the live nodes referencing it."""
    if delta is None:
        delta = TreeNodeSetDelta()
    index: Dict[str, List[str]] = {}
    candidates = dict(nodes)
    candidates.update(delta.updated)
    for candidate in candidates.values():
        reference = candidate.reference_map_node_id
        if reference is not None and candidate.id not in delta.removed:
            index.setdefault(reference, []).append(candidate.id)
    return index


def get_delta_with_updated_node_metrics(
    nodes: TreeNodeSet,
    delta: TreeNodeSetDelta,
    start_node_id: str,
    force_check_parent: bool = True,
) -> TreeNodeSetDelta:
    """Recompute metrics from ``start_node_id`` up through its ancestors.

    Whenever a node's metrics change, the nodes referencing it are
    recomputed too, and their ancestors in turn.

    Args:
        nodes: The snapshot the delta applies to.
        delta: Pending changes; read through when resolving nodes.
        start_node_id: First node to recompute.
        force_check_parent: Record the first node and visit its parent even if
            its metrics did not change.

    Returns:
        A new delta containing ``delta`` plus every recomputed node.
    """
    updated_delta = delta.copy()
    get_node(nodes, start_node_id, updated_delta)
    references: Optional[Dict[str, List[str]]] = None
    queue = deque([(start_node_id, force_check_parent)])
    # A corrupted parent cycle must not loop forever.
    remaining_steps = (len(nodes) + len(updated_delta.updated) + 1) ** 2

    while queue and remaining_steps > 0:
        remaining_steps -= 1
        node_id, force = queue.popleft()
        node = lookup_node(nodes, node_id, updated_delta)
        if node is None:
            continue

        new_metrics = calculate_all_metrics_from_node(
            node,
            get_active_children(nodes, node.id, updated_delta),
            get_referenced_node(nodes, node, updated_delta),
        )
        changed = not metrics_are_same(new_metrics, node.calculated_metrics)
        if not changed and not force:
            continue

        updated_delta.updated[node.id] = node.replace(calculated_metrics=new_metrics)
        if node.parent_id is not None:
            queue.append((node.parent_id, False))
        if changed:
            if references is None:
                references = get_reference_index(nodes, updated_delta)
            queue.extend((referrer_id, False) for referrer_id in references.get(node.id, ()))

    return updated_delta


def get_delta_with_many_updated_node_metrics(
    nodes: TreeNodeSet,
    delta: TreeNodeSetDelta,
    start_node_ids: Iterable[str],
) -> TreeNodeSetDelta:
    updated_delta = delta
    for start_node_id in start_node_ids:
        updated_delta = get_delta_with_updated_node_metrics(nodes, updated_delta, start_node_id)
    return updated_delta


def _metric_dependencies(nodes: TreeNodeSet, node: TreeNode) -> List[str]:
    dependencies = [child_id for child_id in node.children_ids if child_id in nodes]
    reference = node.reference_map_node_id
    if reference is not None and reference in nodes:
        dependencies.append(reference)
    return dependencies


def calculate_all_node_metrics(nodes: TreeNodeSet) -> Dict[str, Metrics]:
    """Calculate every node's metrics from scratch, ignoring stored values.

    Children and referenced nodes are calculated before the nodes depending
    on them. Inside a corrupted cycle the stored value of the node closing
    the cycle is used.
    """
    results: Dict[str, Metrics] = {}

    def current(node_id: str) -> Metrics:
        return results.get(node_id, nodes[node_id].calculated_metrics)

    for start_id in nodes:
        if start_id in results:
            continue
        pending = set()
        stack = [(start_id, False)]
        while stack:
            node_id, ready = stack.pop()
            if node_id in results:
                continue
            node = nodes[node_id]
            if ready:
                pending.discard(node_id)
                active_children = [
                    child_id for child_id in node.children_ids
                    if child_id in nodes and nodes[child_id].is_active
                ]
                reference = node.reference_map_node_id
                results[node_id] = calculate_all_metrics(
                    node.set_metrics,
                    [current(child_id) for child_id in active_children],
                    current(reference) if reference is not None and reference in nodes else None,
                )
                continue
            if node_id in pending:
                continue
            pending.add(node_id)
            stack.append((node_id, True))
            for dependency in _metric_dependencies(nodes, node):
                if dependency not in results and dependency not in pending:
                    stack.append((dependency, False))

    return results


def get_delta_with_all_metrics_recalculated(nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Delta holding every node whose stored metrics differ from a full recalculation."""
    delta = TreeNodeSetDelta()
    for node_id, metrics in calculate_all_node_metrics(nodes).items():
        node = nodes[node_id]
        if not metrics_are_same(metrics, node.calculated_metrics):
            delta.updated[node_id] = node.replace(calculated_metrics=metrics)
    return delta
