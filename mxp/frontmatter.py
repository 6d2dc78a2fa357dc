"""Front-matter codec: ``---``-delimited YAML followed by a markdown body."""

from __future__ import annotations

import re
from typing import Any, Dict, Tuple

import yaml

from .errors import CorruptionError

_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*\r?$\n?", re.DOTALL | re.MULTILINE)


def has_front_matter(text: str) -> bool:
    return _FRONT_MATTER_RE.match(text) is not None


def parse_document(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a document into its front-matter mapping and its body.

    A document without front matter parses as ``({}, text)``.

    Raises:
        CorruptionError: the YAML block is invalid or is not a mapping.
    """
    match = _FRONT_MATTER_RE.match(text)
    if match is None:
        return {}, text

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise CorruptionError(f"Invalid YAML front matter: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CorruptionError(f"Front matter must be a mapping, got {type(data).__name__}")
    return data, text[match.end():]


def stringify_document(data: Dict[str, Any], body: str = "") -> str:
    yaml_content = yaml.safe_dump(
        data,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"---\n{yaml_content}---\n{body or ''}"
