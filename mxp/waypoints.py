"""Mirror a map subtree into the waypoint subtree that references it.

A waypoint carrying ``metadata.referenceMapNodeId`` is kept shaped like the
referenced map node: every map child gets a waypoint child, matched purely on
the cross-reference id. Waypoint descendants that no longer match a live map
node are never deleted; they are moved under an "Old Nodes" holder so that
user-entered data survives edits to the map.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from .errors import NotFoundError
from .metrics import get_delta_with_all_metrics_recalculated
from .models import REFERENCE_MAP_NODE_ID, NodeProperties, TreeNode, TreeNodeSet, TreeNodeSetDelta
from .tree import apply_delta, create_node, get_all_descendant_nodes, merge_deltas

OLD_NODES_TITLE = "Old Nodes"
OLD_NODES_DESCRIPTION = (
    "Contains nodes that were present in the previous waypoint subtree "
    "but are no longer present in the map subtree"
)
OLD_NODES_MARKER = "oldNodesHolder"


def get_nodes_by_referenced_map_id(nodes: List[TreeNode]) -> Dict[str, TreeNode]:
    """Index waypoints by the map node they reference; the first one wins."""
    by_map_id: Dict[str, TreeNode] = {}
    for node in nodes:
        reference = node.reference_map_node_id
        if reference is not None:
            by_map_id.setdefault(reference, node)
    return by_map_id


def _find_old_nodes_holder(nodes: TreeNodeSet, root_waypoint: TreeNode) -> Optional[TreeNode]:
    for child_id in root_waypoint.children_ids:
        child = nodes.get(child_id)
        if child is not None and child.metadata.get(OLD_NODES_MARKER):
            return child
    return None


def _mirror_map_subtree(
    nodes: TreeNodeSet,
    root_waypoint: TreeNode,
    root_map: TreeNode,
    waypoints_by_map_id: Dict[str, TreeNode],
) -> TreeNodeSetDelta:
    delta = TreeNodeSetDelta()
    visited_map_ids = {root_map.id}
    stack = [(root_waypoint, root_map)]

    while stack:
        waypoint, map_node = stack.pop()
        children_ids = []
        for map_child_id in map_node.children_ids:
            map_child = nodes.get(map_child_id)
            if map_child is None or map_child_id in visited_map_ids:
                continue
            visited_map_ids.add(map_child_id)

            waypoint_child = waypoints_by_map_id.get(map_child_id)
            if waypoint_child is None:
                waypoint_child = create_node(
                    "waypoint",
                    NodeProperties(title=map_child.title, metadata={REFERENCE_MAP_NODE_ID: map_child.id}),
                    waypoint.id,
                )
            waypoint_child = waypoint_child.replace(parent_id=waypoint.id)
            children_ids.append(waypoint_child.id)
            stack.append((waypoint_child, map_child))

        delta.updated[waypoint.id] = waypoint.replace(children_ids=tuple(children_ids))

    return delta


def _quarantine_unmatched(
    nodes: TreeNodeSet,
    root_waypoint: TreeNode,
    sync_delta: TreeNodeSetDelta,
    subtree_nodes: List[TreeNode],
    holder: Optional[TreeNode],
) -> TreeNodeSetDelta:
    missing = [
        node for node in subtree_nodes
        if node.id not in sync_delta.updated and (holder is None or node.id != holder.id)
    ]
    missing_ids = {node.id for node in missing}
    top_missing = [node for node in missing if node.parent_id not in missing_ids]

    if not top_missing and holder is None:
        return sync_delta

    if holder is None:
        holder = create_node(
            "waypoint",
            NodeProperties(
                title=OLD_NODES_TITLE,
                description=OLD_NODES_DESCRIPTION,
                metadata={OLD_NODES_MARKER: True},
            ),
            root_waypoint.id,
        )

    already_held = [node.id for node in top_missing if node.parent_id == holder.id]
    held_order = [child_id for child_id in holder.children_ids if child_id in already_held]
    newly_held = [node.id for node in top_missing if node.id not in already_held]

    delta = sync_delta.copy()
    delta.updated[holder.id] = holder.replace(
        parent_id=root_waypoint.id,
        children_ids=tuple(held_order + newly_held),
    )
    for node in top_missing:
        delta.updated[node.id] = node.replace(parent_id=holder.id)

    root = delta.updated[root_waypoint.id]
    delta.updated[root_waypoint.id] = root.replace(children_ids=root.children_ids + (holder.id,))
    return delta


def get_waypoint_synced_to_map(nodes: TreeNodeSet, waypoint_id: str) -> TreeNodeSetDelta:
    """Delta that reshapes the waypoint subtree after its referenced map node."""
    root_waypoint = nodes.get(waypoint_id)
    if root_waypoint is None:
        raise NotFoundError(f"Node {waypoint_id} not found", node_id=waypoint_id)

    map_id = root_waypoint.reference_map_node_id
    root_map = nodes.get(map_id) if map_id is not None else None
    if root_map is None or root_map.type != "map":
        return TreeNodeSetDelta()

    holder = _find_old_nodes_holder(nodes, root_waypoint)
    subtree_nodes = get_all_descendant_nodes(nodes, waypoint_id)
    waypoints_by_map_id = get_nodes_by_referenced_map_id(
        [node for node in subtree_nodes if holder is None or node.id != holder.id]
    )

    sync_delta = _mirror_map_subtree(nodes, root_waypoint, root_map, waypoints_by_map_id)
    sync_delta = _quarantine_unmatched(nodes, root_waypoint, sync_delta, subtree_nodes, holder)

    metrics_delta = get_delta_with_all_metrics_recalculated(apply_delta(nodes, sync_delta))
    merged = merge_deltas(sync_delta, metrics_delta)
    merged.updated = {
        node_id: node for node_id, node in merged.updated.items()
        if nodes.get(node_id) != node
    }
    return merged
