"""Delta algebra for the node tree.

Every function here is pure: it takes a node set (and sometimes a pending
delta) and returns a ``TreeNodeSetDelta`` describing the minimal change.
Nothing is mutated in place; callers apply the delta with ``apply_delta``.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidOperationError, NotFoundError
from .metrics import (
    METRIC_KEYS,
    calculate_all_metrics,
    compact_merge_metrics,
    get_delta_with_many_updated_node_metrics,
    get_delta_with_updated_node_metrics,
    get_reference_index,
)
from .models import (
    NODE_TYPES,
    NodeProperties,
    NodeUpdate,
    TreeNode,
    TreeNodeSet,
    TreeNodeSetDelta,
)
from .node_set import (
    children_ids_with_insertion,
    children_ids_with_removal,
    get_node,
    lookup_node,
    move_identifier_in_array,
)

# ---------------------------------------------------------------------------
# Single node creation and update
# ---------------------------------------------------------------------------


def default_filename(node_id: str) -> str:
    return f"{node_id}.md"


def create_node(
    node_type: str,
    properties: NodeProperties,
    parent_id: Optional[str] = None,
) -> TreeNode:
    """Build a detached node with a fresh id and metrics from empty children."""
    if node_type not in NODE_TYPES:
        raise InvalidOperationError(f"Invalid node type: {node_type}")
    issues = properties.validate()
    issues.extend(f"Unknown metric: {name}" for name in properties.set_metrics if name not in METRIC_KEYS)
    if issues:
        raise InvalidOperationError("; ".join(issues))
    node_id = str(uuid.uuid4())
    return TreeNode(
        id=node_id,
        type=node_type,
        title=properties.title,
        description=properties.description,
        parent_id=parent_id,
        children_ids=(),
        metadata=dict(properties.metadata),
        set_metrics=dict(properties.set_metrics),
        calculated_metrics=calculate_all_metrics(properties.set_metrics, [], None),
        filename=default_filename(node_id),
        node_state=properties.node_state,
    )


def get_updated_node(node: TreeNode, updates: NodeUpdate) -> TreeNode:
    changes: Dict[str, Any] = {
        "set_metrics": compact_merge_metrics(node.set_metrics, updates.set_metrics),
    }
    if updates.title is not None:
        changes["title"] = updates.title
    if updates.description is not None:
        changes["description"] = updates.description
    if updates.metadata is not None:
        changes["metadata"] = dict(updates.metadata)
    if updates.node_state is not None:
        changes["node_state"] = updates.node_state
    return node.replace(**changes)


# ---------------------------------------------------------------------------
# Delta composition
# ---------------------------------------------------------------------------


def _without(nodes: TreeNodeSet, ids_to_drop: TreeNodeSet) -> TreeNodeSet:
    if not ids_to_drop:
        return dict(nodes)
    return {node_id: node for node_id, node in nodes.items() if node_id not in ids_to_drop}


def merge_deltas(
    delta1: Optional[TreeNodeSetDelta],
    delta2: Optional[TreeNodeSetDelta],
) -> TreeNodeSetDelta:
    """Merge two deltas; ``delta2`` wins wherever they disagree."""
    if delta1 is None or delta2 is None:
        chosen = delta1 or delta2
        return chosen.copy() if chosen is not None else TreeNodeSetDelta()
    return TreeNodeSetDelta(
        updated={**_without(delta1.updated, delta2.removed), **delta2.updated},
        removed={**_without(delta1.removed, delta2.updated), **delta2.removed},
    )


def apply_delta(nodes: TreeNodeSet, delta: TreeNodeSetDelta) -> TreeNodeSet:
    return _without({**nodes, **delta.updated}, delta.removed)


def get_tree_node_set_delta(old_nodes: TreeNodeSet, new_nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Diff two snapshots into the delta that turns ``old_nodes`` into ``new_nodes``."""
    return TreeNodeSetDelta(
        updated={
            node_id: node for node_id, node in new_nodes.items()
            if old_nodes.get(node_id) != node
        },
        removed={
            node_id: node for node_id, node in old_nodes.items()
            if node_id not in new_nodes
        },
    )


# ---------------------------------------------------------------------------
# Read-only tree inspectors
# ---------------------------------------------------------------------------


def get_all_root_nodes(nodes: TreeNodeSet) -> List[TreeNode]:
    return [node for node in nodes.values() if node.parent_id is None]


def get_root_nodes_by_type(nodes: TreeNodeSet) -> Dict[str, TreeNode]:
    """First root found for each type."""
    roots: Dict[str, TreeNode] = {}
    for node in get_all_root_nodes(nodes):
        roots.setdefault(node.type, node)
    return roots


def get_descendant_ids(
    nodes: TreeNodeSet,
    node_id: str,
    delta: Optional[TreeNodeSetDelta] = None,
) -> List[str]:
    """``node_id`` followed by every descendant, depth first, in child order."""
    seen = set()
    ordered = []
    stack = [node_id]
    while stack:
        current_id = stack.pop()
        if current_id in seen:
            continue
        node = lookup_node(nodes, current_id, delta)
        if node is None:
            continue
        seen.add(current_id)
        ordered.append(current_id)
        stack.extend(reversed(node.children_ids))
    return ordered


def get_all_descendant_nodes(nodes: TreeNodeSet, node_id: str) -> List[TreeNode]:
    """Descendants of ``node_id``, excluding the node itself."""
    return [nodes[descendant_id] for descendant_id in get_descendant_ids(nodes, node_id)[1:]]


def is_ancestor_of(
    nodes: TreeNodeSet,
    ancestor_id: str,
    node_id: str,
    delta: Optional[TreeNodeSetDelta] = None,
) -> bool:
    """True when ``ancestor_id`` appears on ``node_id``'s parent chain."""
    seen = set()
    node = lookup_node(nodes, node_id, delta)
    while node is not None and node.parent_id is not None and node.id not in seen:
        if node.parent_id == ancestor_id:
            return True
        seen.add(node.id)
        node = lookup_node(nodes, node.parent_id, delta)
    return False


def inspect_tree(nodes: TreeNodeSet, root_node_id: str) -> Dict[str, Any]:
    """Nested dictionary view of a subtree, each node carrying ``children``."""
    root = get_node(nodes, root_node_id)
    view = dict(root.to_dict(), children=[])
    stack = [(root, view)]
    while stack:
        node, node_view = stack.pop()
        for child_id in node.children_ids:
            child = nodes.get(child_id)
            if child is None:
                continue
            child_view = dict(child.to_dict(), children=[])
            node_view["children"].append(child_view)
            stack.append((child, child_view))
    return view


def find_priority_nodes(nodes: TreeNodeSet, root_node_id: str) -> List[TreeNode]:
    """Nodes to work on next, lowest readiness first.

    Walking down from the root, a node with an explicit readiness level is
    taken as-is; otherwise its children are searched, and a node whose
    subtree yields nothing is taken itself. Draft nodes are skipped.
    """
    result: List[TreeNode] = []
    # (node_id, expanded, result length when first visited)
    stack: List[Tuple[str, bool, int]] = [(root_node_id, False, 0)]
    while stack:
        node_id, expanded, mark = stack.pop()
        node = nodes.get(node_id)
        if node is None or node.node_state == "draft":
            continue
        if expanded:
            if len(result) == mark:
                result.append(node)
            continue
        if node.set_metrics.get("readinessLevel") is not None:
            result.append(node)
            continue
        stack.append((node_id, True, len(result)))
        for child_id in reversed(node.children_ids):
            stack.append((child_id, False, 0))

    ordered = []
    for level in range(10):
        ordered.extend(node for node in result if node.calculated_metrics.get("readinessLevel") == level)
    return ordered


# ---------------------------------------------------------------------------
# Tree delta functions
# ---------------------------------------------------------------------------


def get_delta_for_node_added(
    nodes: TreeNodeSet,
    node_to_add: TreeNode,
    parent_id: str,
    insert_at_index: Optional[int] = None,
) -> TreeNodeSetDelta:
    parent = nodes.get(parent_id)
    if parent is None:
        raise NotFoundError(f"Parent node {parent_id} not found", node_id=parent_id)

    delta = TreeNodeSetDelta(
        updated={
            parent_id: parent.replace(
                children_ids=children_ids_with_insertion(parent.children_ids, node_to_add.id, insert_at_index)
            ),
            node_to_add.id: node_to_add.replace(parent_id=parent_id),
        }
    )
    return get_delta_with_updated_node_metrics(nodes, delta, node_to_add.id, True)


def get_delta_for_node_created(
    nodes: TreeNodeSet,
    node_type: str,
    properties: NodeProperties,
    parent_id: str,
    insert_at_index: Optional[int] = None,
) -> Tuple[TreeNode, TreeNodeSetDelta]:
    added_node = create_node(node_type, properties)
    delta = get_delta_for_node_added(nodes, added_node, parent_id, insert_at_index)
    return delta.updated[added_node.id], delta


def get_delta_for_node_updated(
    nodes: TreeNodeSet,
    node_id: str,
    updates: NodeUpdate,
) -> TreeNodeSetDelta:
    node = nodes.get(node_id)
    if node is None:
        raise NotFoundError(f"Node {node_id} not found", node_id=node_id)
    issues = updates.validate()
    if issues:
        raise InvalidOperationError("; ".join(issues))

    delta = TreeNodeSetDelta(updated={node_id: get_updated_node(node, updates)})
    updated_delta = get_delta_with_updated_node_metrics(nodes, delta, node_id)

    # Active-child filtering at the parent depends on state, not value.
    if updates.node_state is not None and node.parent_id is not None:
        return get_delta_with_updated_node_metrics(nodes, updated_delta, node.parent_id)
    return updated_delta


def get_delta_for_node_removed(nodes: TreeNodeSet, node_id: str) -> TreeNodeSetDelta:
    node = nodes.get(node_id)
    if node is None:
        raise NotFoundError(f"Node {node_id} not found", node_id=node_id)

    delta = TreeNodeSetDelta(
        removed={descendant_id: nodes[descendant_id] for descendant_id in get_descendant_ids(nodes, node_id)}
    )

    parent = nodes.get(node.parent_id) if node.parent_id is not None else None
    if parent is not None and parent.id not in delta.removed:
        delta.updated[parent.id] = parent.replace(
            children_ids=children_ids_with_removal(parent.children_ids, node_id)
        )
        delta = get_delta_with_updated_node_metrics(nodes, delta, parent.id)

    # Nodes referencing a removed node fall back to their own children.
    references = get_reference_index(nodes, delta)
    referrer_ids = [
        referrer_id
        for removed_id in delta.removed
        for referrer_id in references.get(removed_id, ())
    ]
    return get_delta_with_many_updated_node_metrics(nodes, delta, referrer_ids)


def get_delta_for_node_parent_changed(
    nodes: TreeNodeSet,
    node_id: str,
    new_parent_id: str,
    insert_at_index: Optional[int] = None,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    """Move ``node_id`` under ``new_parent_id``.

    ``base_delta`` lets callers chain moves; the returned delta includes it.
    """
    node = get_node(nodes, node_id, base_delta)
    new_parent = get_node(nodes, new_parent_id, base_delta)
    if new_parent_id == node_id or is_ancestor_of(nodes, node_id, new_parent_id, base_delta):
        raise InvalidOperationError("Cannot move a node to one of its descendants")

    if node.parent_id == new_parent_id:
        children_ids = new_parent.children_ids
        if insert_at_index is not None:
            children_ids = move_identifier_in_array(children_ids, node_id, insert_at_index)
        delta = merge_deltas(
            base_delta,
            TreeNodeSetDelta(updated={new_parent_id: new_parent.replace(children_ids=children_ids)}),
        )
        return get_delta_with_updated_node_metrics(nodes, delta, new_parent_id)

    delta = merge_deltas(
        base_delta,
        TreeNodeSetDelta(
            updated={
                node_id: node.replace(parent_id=new_parent_id),
                new_parent_id: new_parent.replace(
                    children_ids=children_ids_with_insertion(new_parent.children_ids, node_id, insert_at_index)
                ),
            }
        ),
    )

    old_parent = lookup_node(nodes, node.parent_id, delta)
    if old_parent is not None:
        delta.updated[old_parent.id] = old_parent.replace(
            children_ids=children_ids_with_removal(old_parent.children_ids, node_id)
        )
        delta = get_delta_with_updated_node_metrics(nodes, delta, old_parent.id)

    return get_delta_with_updated_node_metrics(nodes, delta, new_parent_id)
