"""Error taxonomy for the MXP tree store.

``NotFoundError`` and ``InvalidOperationError`` reject a mutation outright;
the snapshot they were computed against is left untouched.
``CorruptionError`` is raised while reading documents and is recovered by the
file store during load.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class TreeError(Exception):
    """Base class for tree store errors."""


class NotFoundError(TreeError, LookupError):
    """A referenced node or parent id is absent from the node set."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class InvalidOperationError(TreeError, ValueError):
    """The requested mutation would break a tree invariant."""


class CorruptionError(TreeError, ValueError):
    """An on-disk document could not be parsed."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path
