"""Read-only access to a node set, optionally viewed through a pending delta."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .errors import InvalidOperationError, NotFoundError
from .models import TreeNode, TreeNodeSet, TreeNodeSetDelta


def lookup_node(
    nodes: TreeNodeSet,
    node_id: Optional[str],
    delta: Optional[TreeNodeSetDelta] = None,
) -> Optional[TreeNode]:
    """Return the node as seen through ``delta``, or None if absent or removed."""
    if node_id is None:
        return None
    if delta is not None:
        if node_id in delta.removed:
            return None
        if node_id in delta.updated:
            return delta.updated[node_id]
    return nodes.get(node_id)


def get_node(
    nodes: TreeNodeSet,
    node_id: str,
    delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNode:
    if delta is not None and node_id in delta.removed:
        raise InvalidOperationError(f"Node {node_id} is being removed")
    node = lookup_node(nodes, node_id, delta)
    if node is None:
        raise NotFoundError(f"Node {node_id} not found", node_id=node_id)
    return node


def get_child_nodes(
    nodes: TreeNodeSet,
    node_id: str,
    delta: Optional[TreeNodeSetDelta] = None,
) -> List[TreeNode]:
    """Children of a node; ids that do not resolve are skipped."""
    children = []
    for child_id in get_node(nodes, node_id, delta).children_ids:
        child = lookup_node(nodes, child_id, delta)
        if child is not None:
            children.append(child)
    return children


def get_active_children(
    nodes: TreeNodeSet,
    node_id: str,
    delta: Optional[TreeNodeSetDelta] = None,
) -> List[TreeNode]:
    return [child for child in get_child_nodes(nodes, node_id, delta) if child.is_active]


def get_referenced_node(
    nodes: TreeNodeSet,
    node: TreeNode,
    delta: Optional[TreeNodeSetDelta] = None,
) -> Optional[TreeNode]:
    return lookup_node(nodes, node.reference_map_node_id, delta)


# ---------------------------------------------------------------------------
# Ordered children id helpers
# ---------------------------------------------------------------------------


def children_ids_with_insertion(
    children_ids: Sequence[str],
    node_id: str,
    insert_at_index: Optional[int] = None,
) -> Tuple[str, ...]:
    """Insert ``node_id``; a missing or negative index appends, a large one clamps."""
    ids = [child_id for child_id in children_ids if child_id != node_id]
    if insert_at_index is None or insert_at_index < 0:
        ids.append(node_id)
    else:
        ids.insert(min(insert_at_index, len(ids)), node_id)
    return tuple(ids)


def children_ids_with_removal(children_ids: Sequence[str], node_id: str) -> Tuple[str, ...]:
    return tuple(child_id for child_id in children_ids if child_id != node_id)


def move_identifier_in_array(
    children_ids: Sequence[str],
    node_id: str,
    target_index: int,
) -> Tuple[str, ...]:
    """Move ``node_id`` to ``target_index`` within the same list (clamped)."""
    ids = list(children_ids)
    if node_id not in ids:
        return tuple(ids)
    ids.remove(node_id)
    if target_index < 0:
        target_index = len(ids)
    ids.insert(min(target_index, len(ids)), node_id)
    return tuple(ids)
