"""MCP server exposing the MXP node tree."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from mxp import FileStore, NodeProperties
from mxp.config import StoreConfig, resolve_storage_root
from mxp.models import TreeNode, TreeNodeSetDelta
from mxp.mxp_logging import setup_logging
from mxp.tree import find_priority_nodes

mcp = FastMCP("mxp")

_STORES: Dict[Path, FileStore] = {}


def _store(root: Optional[str]) -> FileStore:
    """Open (once per storage root) and return the store for ``root``."""
    resolved = resolve_storage_root(root)
    store = _STORES.get(resolved)
    if store is None:
        store = FileStore.open(resolved)
        _STORES[resolved] = store
    return store


def _store_optional(root: Optional[str]) -> Optional[FileStore]:
    try:
        return _store(root)
    except ValueError:
        return None


def _serialize_delta(delta: TreeNodeSetDelta) -> Dict[str, Any]:
    return delta.to_dict()


def _serialize_node(node: TreeNode) -> Dict[str, Any]:
    return node.to_dict()


@mcp.tool()
def get_all_nodes(root: Optional[str] = None) -> Dict[str, Any]:
    """Return every node of the tree, keyed by id, plus the root id of each node type."""

    store = _store(root)
    return {
        "nodes": {node_id: _serialize_node(node) for node_id, node in store.get_all_nodes().items()},
        "root_nodes_by_type": {node_type: node.id for node_type, node in store.root_nodes_by_type.items()},
    }


@mcp.tool()
def get_node(node_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return one node by id."""

    store = _store(root)
    return {"node": _serialize_node(store.get_node(node_id))}


@mcp.tool()
def create_node(
    node_type: str,
    title: str = "",
    description: str = "",
    parent_id: Optional[str] = None,
    insert_at_index: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    set_metrics: Optional[Dict[str, int]] = None,
    node_state: str = "active",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a node of type 'map', 'waypoint' or 'user'.

    Without parent_id the node is added under the root of its type. insert_at_index
    positions it among the parent's children; omitted or negative appends.
    Returns the created node and the delta of every node that changed.
    """

    store = _store(root)
    properties = NodeProperties(
        title=title,
        description=description,
        metadata=dict(metadata or {}),
        set_metrics=dict(set_metrics or {}),
        node_state=node_state,
    )
    node, delta = store.create_node(node_type, properties, parent_id, insert_at_index)
    return {
        "node": _serialize_node(node),
        "delta": _serialize_delta(delta),
        "message": f"Created {node_type} node {node.id}",
    }


@mcp.tool()
def update_node(node_id: str, updates: Dict[str, Any], root: Optional[str] = None) -> Dict[str, Any]:
    """Update a node's title, description, metadata, nodeState or setMetrics.

    Keys left out of ``updates`` are untouched. Inside ``setMetrics`` a null value
    clears that metric, so the calculated value falls back to children or the
    referenced map node.

    Example: updates={"title": "Ship beta", "setMetrics": {"readinessLevel": 4}}
    """

    store = _store(root)
    delta = store.update_node(node_id, updates)
    return {"delta": _serialize_delta(delta)}


@mcp.tool()
def remove_node(node_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Remove a node together with its whole subtree."""

    store = _store(root)
    delta = store.remove_node(node_id)
    return {
        "delta": _serialize_delta(delta),
        "removed_count": len(delta.removed),
    }


@mcp.tool()
def set_node_parent(
    node_id: str,
    new_parent_id: str,
    insert_at_index: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a node under a new parent, or reorder it when the parent is unchanged.

    Moving a node under itself or one of its descendants is rejected.
    """

    store = _store(root)
    delta = store.set_node_parent(node_id, new_parent_id, insert_at_index)
    return {"delta": _serialize_delta(delta)}


@mcp.tool()
def sync_waypoint(waypoint_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mirror the map subtree referenced by a waypoint's metadata.referenceMapNodeId.

    Waypoints that no longer match a map node are moved under an "Old Nodes" holder.
    """

    store = _store(root)
    delta = store.sync_waypoint(waypoint_id)
    return {
        "delta": _serialize_delta(delta),
        "changed": not delta.is_empty(),
    }


@mcp.tool()
def reload_store(root: Optional[str] = None) -> Dict[str, Any]:
    """Re-read every document from disk, healing whatever hand edits broke."""

    store = _store(root)
    nodes = store.load()
    return {
        "storage_root": str(store.storage_root),
        "node_count": len(nodes),
    }


@mcp.tool()
def priority_nodes(
    root_node_id: Optional[str] = None,
    limit: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List the nodes to work on next, lowest readiness level first.

    Defaults to searching from the root of the map tree.
    """

    store = _store(root)
    if root_node_id is None:
        map_root = store.root_nodes_by_type.get("map")
        if map_root is None:
            return {"nodes": []}
        root_node_id = map_root.id
    else:
        store.get_node(root_node_id)

    nodes = find_priority_nodes(store.get_all_nodes(), root_node_id)
    if limit is not None:
        nodes = nodes[:limit]
    return {"nodes": [_serialize_node(node) for node in nodes]}


def render_outline(store: FileStore) -> str:
    """Indented outline of every type tree, with calculated readiness levels."""

    nodes = store.get_all_nodes()
    lines: List[str] = ["MXP Tree"]
    for node_type, root_node in store.root_nodes_by_type.items():
        lines.append("")
        lines.append(f"[{node_type}]")
        stack = [(root_node.id, 0)]
        seen = set()
        while stack:
            node_id, depth = stack.pop()
            node = nodes.get(node_id)
            if node is None or node_id in seen:
                continue
            seen.add(node_id)
            readiness = node.calculated_metrics.get("readinessLevel")
            draft = " (draft)" if node.node_state == "draft" else ""
            lines.append(f"{'  ' * depth}- {node.title or node.id} [RL {readiness}]{draft}")
            for child_id in reversed(node.children_ids):
                stack.append((child_id, depth + 1))
    return "\n".join(lines)


@mcp.resource("mxp://tree")
def resource_tree() -> str:
    """Resource view exposing the tree as an indented outline."""

    store = _store_optional(None)
    if not store:
        return "No storage root detected. Launch tools with a 'root' argument or set MXP_STORAGE_ROOT."
    return render_outline(store)


def configure(config: StoreConfig) -> Optional[FileStore]:
    """Set up logging and open the configured storage root, if there is one."""

    issues = config.validate()
    if issues:
        raise ValueError("; ".join(issues))
    setup_logging(config.log_level, config.log_file)
    if config.storage_root is None:
        return None
    return _store(str(config.storage_root))


if __name__ == "__main__":
    configure(StoreConfig.from_env())
    mcp.run(transport="stdio")
