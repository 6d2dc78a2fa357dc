"""Load-time repair of structural inconsistencies.

Hand edits, git merges and interrupted writes can leave the documents on disk
with dangling child ids, missing parents, duplicate roots or parent cycles.
Each pass here is pure and idempotent: on an already-healed node set it
returns an empty delta.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .metrics import get_delta_with_all_metrics_recalculated, get_delta_with_updated_node_metrics
from .models import ROOT_NODE_DEFAULT_PROPERTIES, TreeNode, TreeNodeSet, TreeNodeSetDelta
from .node_set import get_node, lookup_node
from .tree import (
    apply_delta,
    create_node,
    get_all_root_nodes,
    get_delta_for_node_parent_changed,
    is_ancestor_of,
    merge_deltas,
)


def get_healed_children_ids_delta(nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Drop child ids that are absent, duplicated, or claimed by another parent."""
    delta = TreeNodeSetDelta()
    for node in nodes.values():
        seen = set()
        valid_children = []
        for child_id in node.children_ids:
            child = nodes.get(child_id)
            if child is None or child_id in seen or child.parent_id != node.id:
                continue
            seen.add(child_id)
            valid_children.append(child_id)
        if tuple(valid_children) != node.children_ids:
            delta.updated[node.id] = node.replace(children_ids=tuple(valid_children))

    for node_id in list(delta.updated):
        delta = get_delta_with_updated_node_metrics(nodes, delta, node_id)
    return delta


def vivify_root_nodes_by_type(nodes: TreeNodeSet) -> Tuple[TreeNodeSetDelta, Dict[str, TreeNode]]:
    """Make sure every declared type has exactly one root.

    Duplicate roots are moved, subtree intact, under the first root found for
    their type. Missing roots are created from ``ROOT_NODE_DEFAULT_PROPERTIES``.
    """
    delta = TreeNodeSetDelta()
    root_nodes_by_type: Dict[str, TreeNode] = {}

    for node in get_all_root_nodes(nodes):
        existing_root = root_nodes_by_type.get(node.type)
        if existing_root is not None:
            delta = get_delta_for_node_parent_changed(nodes, node.id, existing_root.id, None, delta)
        else:
            root_nodes_by_type[node.type] = node

    for node_type, properties in ROOT_NODE_DEFAULT_PROPERTIES.items():
        if node_type not in root_nodes_by_type:
            root = create_node(node_type, properties)
            delta.updated[root.id] = root
            root_nodes_by_type[node_type] = root

    root_nodes_by_type = {
        node_type: get_node(nodes, root.id, delta)
        for node_type, root in root_nodes_by_type.items()
    }
    return delta, root_nodes_by_type


def _first_listing_parents(nodes: TreeNodeSet) -> Dict[str, str]:
    listed_by: Dict[str, str] = {}
    for node in nodes.values():
        for child_id in node.children_ids:
            listed_by.setdefault(child_id, node.id)
    return listed_by


def _in_parent_cycle(nodes: TreeNodeSet, node_id: str, delta: TreeNodeSetDelta) -> bool:
    seen = set()
    node = lookup_node(nodes, node_id, delta)
    while node is not None and node.parent_id is not None:
        if node.parent_id == node_id:
            return True
        if node.id in seen:
            return False
        seen.add(node.id)
        node = lookup_node(nodes, node.parent_id, delta)
    return False


def _adoptive_parent_id(
    nodes: TreeNodeSet,
    node: TreeNode,
    listed_by: Dict[str, str],
    delta: TreeNodeSetDelta,
) -> Optional[str]:
    candidate_id = listed_by.get(node.id)
    if candidate_id is None or candidate_id == node.id:
        return None
    if lookup_node(nodes, candidate_id, delta) is None:
        return None
    if is_ancestor_of(nodes, node.id, candidate_id, delta):
        return None
    return candidate_id


def get_healed_parent_ids_delta(nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Reattach every node whose parent reference is broken.

    - A node whose parent is missing is adopted by an existing node that still
      lists it as a child, or else moved under the root of its type.
    - A node whose parent does not list it is appended to that parent.
    - A node caught in a parent cycle is moved under the root of its type.
    """
    delta, root_nodes_by_type = vivify_root_nodes_by_type(nodes)
    listed_by = _first_listing_parents(nodes)

    for node_id, original in nodes.items():
        if original.parent_id is None:
            continue
        node = lookup_node(nodes, node_id, delta)
        parent = lookup_node(nodes, node.parent_id, delta)

        if parent is None:
            adopter_id = _adoptive_parent_id(nodes, node, listed_by, delta)
            if adopter_id is not None:
                delta.updated[node_id] = node.replace(parent_id=adopter_id)
                delta = get_delta_with_updated_node_metrics(nodes, delta, adopter_id)
            else:
                root_id = root_nodes_by_type[node.type].id
                delta = get_delta_for_node_parent_changed(nodes, node_id, root_id, None, delta)
        elif node_id not in parent.children_ids:
            delta.updated[parent.id] = parent.replace(children_ids=parent.children_ids + (node_id,))
            delta = get_delta_with_updated_node_metrics(nodes, delta, parent.id)

    for node_id in nodes:
        if _in_parent_cycle(nodes, node_id, delta):
            node = get_node(nodes, node_id, delta)
            root_id = root_nodes_by_type[node.type].id
            delta = get_delta_for_node_parent_changed(nodes, node_id, root_id, None, delta)

    return delta


def get_healed_tree_delta(nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Run every healing pass, then recalculate all metrics from scratch."""
    parents_delta = get_healed_parent_ids_delta(nodes)
    healed = apply_delta(nodes, parents_delta)

    children_delta = get_healed_children_ids_delta(healed)
    healed = apply_delta(healed, children_delta)

    metrics_delta = get_delta_with_all_metrics_recalculated(healed)
    return merge_deltas(merge_deltas(parents_delta, children_delta), metrics_delta)
