"""Data models for the MXP tree store.

This module contains the core data structures used throughout the tree
store: nodes, the node set and its deltas, and the payloads used to create
and update nodes.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidOperationError

NODE_TYPES: Tuple[str, ...] = ("map", "waypoint", "user")
NODE_STATES: Tuple[str, ...] = ("draft", "active")

REFERENCE_MAP_NODE_ID = "referenceMapNodeId"

Metrics = Dict[str, int]
Metadata = Dict[str, Any]


@dataclass(slots=True, frozen=True)
class MetricUpdate:
    """One field of a ``setMetrics`` update: keep, clear, or set a value."""

    action: str = "keep"
    value: Optional[int] = None

    @classmethod
    def keep(cls) -> "MetricUpdate":
        return cls("keep")

    @classmethod
    def clear(cls) -> "MetricUpdate":
        return cls("clear")

    @classmethod
    def set(cls, value: int) -> "MetricUpdate":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidOperationError(f"Metric value must be a number, got: {value!r}")
        if isinstance(value, float) and not value.is_integer():
            raise InvalidOperationError(f"Metric value must be an integer, got: {value!r}")
        return cls("set", int(value))

    @classmethod
    def from_raw(cls, value: Any) -> "MetricUpdate":
        """Map a JSON-style value: ``None`` clears, anything else sets."""
        if isinstance(value, MetricUpdate):
            return value
        if value is None:
            return cls.clear()
        return cls.set(value)

    def apply(self, current: Optional[int]) -> Optional[int]:
        if self.action == "set":
            return self.value
        if self.action == "clear":
            return None
        return current


@dataclass(slots=True)
class NodeProperties:
    """Properties supplied when creating a node."""

    title: str = ""
    description: str = ""
    metadata: Metadata = field(default_factory=dict)
    set_metrics: Metrics = field(default_factory=dict)
    node_state: str = "active"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "title": self.title,
            "description": self.description,
            "metadata": dict(self.metadata),
            "setMetrics": dict(self.set_metrics),
            "nodeState": self.node_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeProperties":
        """Create from a camelCase payload."""
        node_state = data.get("nodeState")
        if node_state is None:
            node_state = "draft" if data.get("draft") else "active"
        return cls(
            title=data.get("title") or "",
            description=data.get("description") or "",
            metadata=dict(data.get("metadata") or {}),
            set_metrics={k: v for k, v in (data.get("setMetrics") or {}).items() if v is not None},
            node_state=node_state,
        )

    def validate(self) -> List[str]:
        """Validate the properties and return any issues."""
        issues = []
        if self.node_state not in NODE_STATES:
            issues.append(f"Invalid node state: {self.node_state}")
        for name, value in self.set_metrics.items():
            if isinstance(value, bool) or not isinstance(value, int):
                issues.append(f"Metric {name} must be an integer, got: {value!r}")
        return issues


@dataclass(slots=True)
class NodeUpdate:
    """Partial update of a node.

    Plain fields left as ``None`` are not touched. ``set_metrics`` holds one
    ``MetricUpdate`` per metric the caller mentioned; unmentioned metrics are
    kept.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Metadata] = None
    node_state: Optional[str] = None
    set_metrics: Dict[str, MetricUpdate] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeUpdate":
        """Create from a camelCase payload where ``null`` metrics mean erase."""
        node_state = data.get("nodeState")
        if node_state is None and "draft" in data:
            node_state = "draft" if data["draft"] else "active"
        metadata = data.get("metadata")
        return cls(
            title=data.get("title"),
            description=data.get("description"),
            metadata=dict(metadata) if metadata is not None else None,
            node_state=node_state,
            set_metrics={
                name: MetricUpdate.from_raw(value)
                for name, value in (data.get("setMetrics") or {}).items()
            },
        )

    def validate(self) -> List[str]:
        issues = []
        if self.node_state is not None and self.node_state not in NODE_STATES:
            issues.append(f"Invalid node state: {self.node_state}")
        return issues


@dataclass(slots=True, frozen=True)
class TreeNode:
    """A single node of the tree. Never mutated in place; use ``replace``."""

    id: str
    type: str
    title: str = ""
    description: str = ""
    parent_id: Optional[str] = None
    children_ids: Tuple[str, ...] = ()
    metadata: Metadata = field(default_factory=dict)
    set_metrics: Metrics = field(default_factory=dict)
    calculated_metrics: Metrics = field(default_factory=dict)
    filename: str = ""
    node_state: str = "active"

    def __post_init__(self) -> None:
        if not isinstance(self.children_ids, tuple):
            object.__setattr__(self, "children_ids", tuple(self.children_ids))

    @property
    def is_active(self) -> bool:
        return self.node_state == "active"

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def reference_map_node_id(self) -> Optional[str]:
        return self.metadata.get(REFERENCE_MAP_NODE_ID) if self.metadata else None

    def replace(self, **changes: Any) -> "TreeNode":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase dictionary handed to callers."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "parentId": self.parent_id,
            "childrenIds": list(self.children_ids),
            "metadata": dict(self.metadata),
            "setMetrics": dict(self.set_metrics),
            "calculatedMetrics": dict(self.calculated_metrics),
            "filename": self.filename,
            "nodeState": self.node_state,
        }

    def to_front_matter(self) -> Dict[str, Any]:
        """Front matter written to disk; the description travels as the body."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "nodeState": self.node_state,
            "parentId": self.parent_id,
            "childrenIds": list(self.children_ids),
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        if self.set_metrics:
            data["setMetrics"] = dict(self.set_metrics)
        data["calculatedMetrics"] = dict(self.calculated_metrics)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeNode":
        """Create from the camelCase dictionary produced by ``to_dict``."""
        return cls(
            id=data["id"],
            type=data["type"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            parent_id=data.get("parentId"),
            children_ids=tuple(data.get("childrenIds", [])),
            metadata=dict(data.get("metadata") or {}),
            set_metrics=dict(data.get("setMetrics") or {}),
            calculated_metrics=dict(data.get("calculatedMetrics") or {}),
            filename=data.get("filename", f"{data['id']}.md"),
            node_state=data.get("nodeState", "active"),
        )


TreeNodeSet = Dict[str, TreeNode]


@dataclass(slots=True)
class TreeNodeSetDelta:
    """Minimal description of a transition between two node sets.

    ``updated`` holds added or changed nodes with their latest values;
    ``removed`` holds removed nodes with their last values.
    """

    updated: TreeNodeSet = field(default_factory=dict)
    removed: TreeNodeSet = field(default_factory=dict)

    def copy(self) -> "TreeNodeSetDelta":
        return TreeNodeSetDelta(updated=dict(self.updated), removed=dict(self.removed))

    def is_empty(self) -> bool:
        return not self.updated and not self.removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated": {node_id: node.to_dict() for node_id, node in self.updated.items()},
            "removed": {node_id: node.to_dict() for node_id, node in self.removed.items()},
        }


ROOT_NODE_DEFAULT_PROPERTIES: Dict[str, NodeProperties] = {
    "map": NodeProperties(
        title="Root Problem",
        description=(
            "What is the root problem you are trying to solve? Trace your \"why\" back to the "
            "fundamental human needs you are serving. Who are you serving? What is the problem "
            "you are solving for them? What is the impact of that problem on their lives?"
        ),
    ),
    "waypoint": NodeProperties(
        title="Waypoints",
        description="What is the next deliverable? What does it require? When do you need it?",
    ),
    "user": NodeProperties(
        title="All Contributors",
        description="Who is contributing to this expedition?",
    ),
}
