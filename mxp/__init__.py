"""MXP tree store - core functionality package."""

from .errors import CorruptionError, InvalidOperationError, NotFoundError, TreeError
from .file_store import FileStore
from .models import MetricUpdate, NodeProperties, NodeUpdate, TreeNode, TreeNodeSetDelta

__all__ = [
    "CorruptionError",
    "FileStore",
    "InvalidOperationError",
    "MetricUpdate",
    "NodeProperties",
    "NodeUpdate",
    "NotFoundError",
    "TreeError",
    "TreeNode",
    "TreeNodeSetDelta",
]
