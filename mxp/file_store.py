"""File-backed persistence for the node tree.

One markdown document per node, one directory per node type. The store holds
the only live snapshot; every mutation is computed as a delta by the pure
functions in ``mxp.tree``, written to disk, and only then swapped in.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import TYPE_DIRECTORIES
from .errors import CorruptionError, InvalidOperationError, NotFoundError
from .frontmatter import parse_document, stringify_document
from .healing import get_healed_tree_delta
from .metrics import METRIC_KEYS
from .models import (
    NODE_STATES,
    NodeProperties,
    NodeUpdate,
    TreeNode,
    TreeNodeSet,
    TreeNodeSetDelta,
)
from .mxp_logging import (
    log_delta_applied,
    log_document_healed,
    log_error_with_context,
    log_operation,
    log_performance,
    log_tree_healed,
    observability_hooks,
)
from .tree import (
    apply_delta,
    get_delta_for_node_created,
    get_delta_for_node_parent_changed,
    get_delta_for_node_removed,
    get_delta_for_node_updated,
    get_root_nodes_by_type,
)
from .waypoints import get_waypoint_synced_to_map

logger = logging.getLogger("mxp.file_store")


def _is_scalar(value: Any) -> bool:
    """YAML scalars that are not strings, such as ``42`` or ``2024-01-01``."""
    return value is not None and not isinstance(value, (str, bool, list, dict))


def _coerce_properties(properties: Union[NodeProperties, Dict[str, Any], None]) -> NodeProperties:
    if properties is None:
        return NodeProperties()
    if isinstance(properties, NodeProperties):
        return properties
    return NodeProperties.from_dict(properties)


def _coerce_update(updates: Union[NodeUpdate, Dict[str, Any]]) -> NodeUpdate:
    if isinstance(updates, NodeUpdate):
        return updates
    return NodeUpdate.from_dict(updates)


class FileStore:
    """Keep a directory of node documents in step with the in-memory tree."""

    TYPE_DIRECTORIES = TYPE_DIRECTORIES

    def __init__(self, storage_root: Union[Path, str]):
        self.storage_root = Path(storage_root).expanduser().resolve()
        self._nodes: TreeNodeSet = {}
        self._loaded = False

    @classmethod
    def open(cls, storage_root: Union[Path, str]) -> "FileStore":
        """Create the type directories if needed and load the store."""
        store = cls(storage_root)
        store.ensure_directories()
        store.load()
        return store

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def base_dirs_by_type(self) -> Dict[str, Path]:
        return {
            node_type: self.storage_root / dirname
            for node_type, dirname in self.TYPE_DIRECTORIES.items()
        }

    def ensure_directories(self) -> None:
        try:
            for directory in self.base_dirs_by_type.values():
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create store directories: {e}")
            log_error_with_context(e, {"operation": "ensure_directories", "storage_root": str(self.storage_root)})
            raise

    def get_file_path(self, node: TreeNode) -> Path:
        return self.base_dirs_by_type[node.type] / node.filename

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def root_nodes_by_type(self) -> Dict[str, TreeNode]:
        return get_root_nodes_by_type(self._nodes)

    def get_all_nodes(self) -> TreeNodeSet:
        return dict(self._nodes)

    def get_node(self, node_id: str) -> TreeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found", node_id=node_id)
        return node

    def _read_document(self, path: Path, node_type: str) -> Tuple[TreeNode, List[str]]:
        """Parse one document, filling in whatever its front matter lacks.

        Returns the node and the names of the fields that had to be synthesized.
        """
        healed: List[str] = []

        raw = path.read_bytes()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            error = CorruptionError(f"Document is not valid UTF-8: {e}", path=path)
            log_error_with_context(error, {"operation": "read_document", "path": str(path)})
            text = raw.decode("utf-8", errors="replace")
            healed.append("encoding")

        try:
            data, body = parse_document(text)
        except CorruptionError as e:
            e.path = path
            log_error_with_context(e, {"operation": "read_document", "path": str(path)})
            data, body = {}, text

        node_id = data.get("id")
        if _is_scalar(node_id):
            node_id = str(node_id)
            healed.append("id")
        if not isinstance(node_id, str) or not node_id.strip():
            node_id = str(uuid.uuid4())
            healed.append("id")

        title = data.get("title")
        if _is_scalar(title):
            title = str(title)
            healed.append("title")
        if not isinstance(title, str):
            title = path.stem
            healed.append("title")

        if data.get("type") != node_type:
            healed.append("type")

        node_state = data.get("nodeState")
        if node_state not in NODE_STATES:
            node_state = "draft" if data.get("draft") else "active"
            healed.append("nodeState")

        parent_id = data.get("parentId")
        if _is_scalar(parent_id):
            parent_id = str(parent_id)
            healed.append("parentId")
        if "parentId" not in data or not (parent_id is None or isinstance(parent_id, str)):
            parent_id = None
            healed.append("parentId")

        children_ids = data.get("childrenIds")
        if not isinstance(children_ids, list):
            children_ids = []
            healed.append("childrenIds")
        children_ids = [str(child_id) for child_id in children_ids if child_id is not None]

        metadata = data.get("metadata")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            metadata = {}
            healed.append("metadata")

        set_metrics = data.get("setMetrics") or {}
        if not isinstance(set_metrics, dict):
            set_metrics = {}
        valid_set_metrics = {
            name: value for name, value in set_metrics.items()
            if name in METRIC_KEYS and isinstance(value, int) and not isinstance(value, bool)
        }
        if valid_set_metrics != set_metrics:
            healed.append("setMetrics")

        calculated_metrics = data.get("calculatedMetrics")
        if not isinstance(calculated_metrics, dict):
            calculated_metrics = {}
            healed.append("calculatedMetrics")

        node = TreeNode(
            id=node_id,
            type=node_type,
            title=title,
            description=body,
            parent_id=parent_id,
            children_ids=tuple(children_ids),
            metadata=dict(metadata),
            set_metrics=valid_set_metrics,
            calculated_metrics=dict(calculated_metrics),
            filename=path.name,
            node_state=node_state,
        )
        return node, healed

    @staticmethod
    def _place_unparented(nodes: TreeNodeSet, unplaced_ids: List[str]) -> TreeNodeSet:
        """Attach documents that had no ``parentId`` at all.

        Such a document goes under a node that lists it as a child, else under
        the existing root of its type. Only when its type has no root does it
        stay a root itself.
        """
        if not unplaced_ids:
            return nodes
        unplaced = set(unplaced_ids)
        listed_by: Dict[str, str] = {}
        roots_by_type: Dict[str, str] = {}
        for node in nodes.values():
            for child_id in node.children_ids:
                listed_by.setdefault(child_id, node.id)
            if node.parent_id is None and node.id not in unplaced:
                roots_by_type.setdefault(node.type, node.id)

        placed = dict(nodes)
        for node_id in unplaced_ids:
            node = nodes[node_id]
            parent_id = listed_by.get(node_id) or roots_by_type.get(node.type)
            if parent_id is None or parent_id == node_id:
                roots_by_type.setdefault(node.type, node_id)
                continue
            placed[node_id] = node.replace(parent_id=parent_id)
        return placed

    @log_performance("load_store")
    def load(self) -> TreeNodeSet:
        """Read every document, heal the tree, persist the repairs and swap in the snapshot."""
        try:
            nodes: TreeNodeSet = {}
            rewrite_ids = set()
            unplaced_ids: List[str] = []

            with log_operation("read_documents", storage_root=str(self.storage_root)):
                for node_type, directory in self.base_dirs_by_type.items():
                    if not directory.is_dir():
                        continue
                    for path in sorted(directory.glob("*.md")):
                        node, healed = self._read_document(path, node_type)
                        if node.id in nodes:
                            logger.warning(f"Duplicate node id {node.id} in {path}; assigning a new id")
                            node = node.replace(id=str(uuid.uuid4()))
                            healed.append("id")
                        if healed:
                            rewrite_ids.add(node.id)
                            log_document_healed(path, node.id, healed)
                        if "parentId" in healed and node.parent_id is None:
                            unplaced_ids.append(node.id)
                        nodes[node.id] = node

            nodes = self._place_unparented(nodes, unplaced_ids)
            delta = get_healed_tree_delta(nodes)
            if not delta.is_empty():
                log_tree_healed(self.storage_root, len(delta.updated), len(delta.removed))

            healed_nodes = apply_delta(nodes, delta)
            to_write = TreeNodeSetDelta(
                updated={
                    node_id: healed_nodes[node_id]
                    for node_id in list(delta.updated) + sorted(rewrite_ids)
                    if node_id in healed_nodes
                },
                removed=dict(delta.removed),
            )
            self._write_delta(to_write)

            self._nodes = healed_nodes
            self._loaded = True

            logger.info(f"Loaded {len(self._nodes)} nodes from {self.storage_root}")
            observability_hooks.log_tree_event(
                "store_loaded",
                storage_root=str(self.storage_root),
                node_count=len(self._nodes),
                healed_documents=len(rewrite_ids),
            )
            return self.get_all_nodes()

        except Exception as e:
            logger.error(f"Failed to load store: {e}")
            log_error_with_context(e, {"operation": "load_store", "storage_root": str(self.storage_root)})
            raise

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_node(self, node: TreeNode) -> Path:
        path = self.get_file_path(node)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(stringify_document(node.to_front_matter(), node.description), encoding="utf-8")
        return path

    def _write_delta(self, delta: TreeNodeSetDelta) -> None:
        for node in delta.updated.values():
            self._write_node(node)
        for node in delta.removed.values():
            path = self.get_file_path(node)
            if path.exists():
                path.unlink()

    def _commit(self, operation: str, node_id: Optional[str], delta: TreeNodeSetDelta) -> TreeNodeSetDelta:
        with log_operation(f"commit_{operation}", node_id=node_id):
            self._write_delta(delta)
            self._nodes = apply_delta(self._nodes, delta)
        log_delta_applied(operation, node_id, len(delta.updated), len(delta.removed))
        return delta

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise InvalidOperationError("Store has not been loaded")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @log_performance("create_node")
    def create_node(
        self,
        node_type: str,
        properties: Union[NodeProperties, Dict[str, Any], None] = None,
        parent_id: Optional[str] = None,
        insert_at_index: Optional[int] = None,
    ) -> Tuple[TreeNode, TreeNodeSetDelta]:
        """Create a node under ``parent_id``, or under the root of its type when omitted."""
        try:
            self._require_loaded()
            if parent_id is None:
                root = self.root_nodes_by_type.get(node_type)
                if root is None:
                    raise InvalidOperationError(f"Invalid node type: {node_type}")
                parent_id = root.id

            node, delta = get_delta_for_node_created(
                self._nodes,
                node_type,
                _coerce_properties(properties),
                parent_id,
                insert_at_index,
            )
            self._commit("create", node.id, delta)
            return node, delta

        except Exception as e:
            logger.error(f"Failed to create node: {e}")
            log_error_with_context(e, {
                "operation": "create_node",
                "node_type": node_type,
                "parent_id": parent_id,
            })
            raise

    @log_performance("update_node")
    def update_node(self, node_id: str, updates: Union[NodeUpdate, Dict[str, Any]]) -> TreeNodeSetDelta:
        try:
            self._require_loaded()
            delta = get_delta_for_node_updated(self._nodes, node_id, _coerce_update(updates))
            return self._commit("update", node_id, delta)

        except Exception as e:
            logger.error(f"Failed to update node {node_id}: {e}")
            log_error_with_context(e, {"operation": "update_node", "node_id": node_id})
            raise

    @log_performance("remove_node")
    def remove_node(self, node_id: str) -> TreeNodeSetDelta:
        """Remove a node with its whole subtree. Roots cannot be removed."""
        try:
            self._require_loaded()
            node = self.get_node(node_id)
            if node.is_root:
                raise InvalidOperationError(f"Cannot remove root node {node_id}")
            delta = get_delta_for_node_removed(self._nodes, node_id)
            return self._commit("remove", node_id, delta)

        except Exception as e:
            logger.error(f"Failed to remove node {node_id}: {e}")
            log_error_with_context(e, {"operation": "remove_node", "node_id": node_id})
            raise

    @log_performance("set_node_parent")
    def set_node_parent(
        self,
        node_id: str,
        new_parent_id: str,
        insert_at_index: Optional[int] = None,
    ) -> TreeNodeSetDelta:
        """Move a node under ``new_parent_id``. Roots cannot be moved."""
        try:
            self._require_loaded()
            if self.get_node(node_id).is_root:
                raise InvalidOperationError(f"Cannot move root node {node_id}")
            delta = get_delta_for_node_parent_changed(self._nodes, node_id, new_parent_id, insert_at_index)
            return self._commit("move", node_id, delta)

        except Exception as e:
            logger.error(f"Failed to move node {node_id}: {e}")
            log_error_with_context(e, {
                "operation": "set_node_parent",
                "node_id": node_id,
                "new_parent_id": new_parent_id,
                "insert_at_index": insert_at_index,
            })
            raise

    @log_performance("sync_waypoint")
    def sync_waypoint(self, waypoint_id: str) -> TreeNodeSetDelta:
        """Reshape a waypoint subtree after the map node it references."""
        try:
            self._require_loaded()
            delta = get_waypoint_synced_to_map(self._nodes, waypoint_id)
            if delta.is_empty():
                return delta
            return self._commit("sync", waypoint_id, delta)

        except Exception as e:
            logger.error(f"Failed to sync waypoint {waypoint_id}: {e}")
            log_error_with_context(e, {"operation": "sync_waypoint", "node_id": waypoint_id})
            raise
