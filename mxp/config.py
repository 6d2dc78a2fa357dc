"""Configuration for the MXP tree store."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

STORAGE_ROOT_ENV = "MXP_STORAGE_ROOT"
LOG_LEVEL_ENV = "MXP_LOG_LEVEL"
LOG_FILE_ENV = "MXP_LOG_FILE"

STORAGE_MARKER_DIRECTORY = ".mxp"

# Node type -> subdirectory of the storage root holding its documents.
TYPE_DIRECTORIES: Dict[str, str] = {
    "map": "maps",
    "waypoint": "waypoints",
    "user": "users",
}


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    return [cwd, *cwd.parents]


def _locate_storage_root() -> Optional[Path]:
    for base in _candidate_bases():
        candidate = base / STORAGE_MARKER_DIRECTORY
        if candidate.is_dir():
            return candidate
    return None


def resolve_storage_root(root: Optional[str] = None) -> Path:
    """Pick the storage root: explicit argument, environment, then a ``.mxp`` directory nearby."""
    if root:
        return Path(root).expanduser().resolve()

    env_root = os.getenv(STORAGE_ROOT_ENV)
    if env_root:
        return Path(env_root).expanduser().resolve()

    detected_root = _locate_storage_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine storage root automatically. Provide the 'root' argument when calling the tool, "
        f"set the {STORAGE_ROOT_ENV} environment variable, or create a {STORAGE_MARKER_DIRECTORY} directory."
    )


@dataclass(slots=True)
class StoreConfig:
    """Runtime settings for a store and its logging."""

    storage_root: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "StoreConfig":
        env_root = os.getenv(STORAGE_ROOT_ENV)
        env_log_file = os.getenv(LOG_FILE_ENV)
        return cls(
            storage_root=Path(env_root).expanduser().resolve() if env_root else None,
            log_level=os.getenv(LOG_LEVEL_ENV, "INFO").upper(),
            log_file=Path(env_log_file).expanduser() if env_log_file else None,
        )

    def validate(self) -> List[str]:
        issues = []
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            issues.append(f"Invalid log level: {self.log_level}")
        return issues
