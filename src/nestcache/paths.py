"""
Nested Key Paths
================

A composite key such as ``"user=>profile=>name"`` addresses a field inside
the value stored under the root key ``"user"``. The root value is a plain
dict; intermediate segments are dict fields.

All helpers are pure: they return new containers and never mutate the value
passed in, so a decoded value can be reused safely across operations.
"""

from typing import Any, Dict, List, Tuple

PATH_SEPARATOR = "=>"


class _Missing:
    """Marker for an absent value (distinct from a stored ``None``)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING: Any = _Missing()


def parse_path(key: str) -> Tuple[str, List[str]]:
    """
    Split a composite key into its root key and nested segments.

    Args:
        key: Plain key or segments joined by ``"=>"``

    Returns:
        ``(root, segments)``; ``segments`` is empty for a flat key

    Raises:
        ValueError: If the key or any segment is empty
    """
    if not isinstance(key, str):
        raise ValueError(f"Cache keys must be strings, got {type(key).__name__}")

    root, *segments = key.split(PATH_SEPARATOR)
    if not root or any(segment == "" for segment in segments):
        raise ValueError(f"Invalid cache key: {key!r}")
    return root, segments


def read_nested(root_value: Any, segments: List[str], default: Any = MISSING) -> Any:
    """Walk ``segments`` through dict fields; ``default`` on any dead end."""
    current = root_value
    if current is MISSING:
        return default
    for segment in segments:
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def write_nested(root_value: Any, segments: List[str], new_value: Any) -> Any:
    """
    Return a copy of ``root_value`` with the field at ``segments`` set.

    A missing or non-dict root, and any missing or non-dict intermediate, is
    replaced by an empty dict. With no segments the new value replaces the
    root entirely.
    """
    if not segments:
        return new_value

    head, rest = segments[0], segments[1:]
    updated: Dict[str, Any] = dict(root_value) if isinstance(root_value, dict) else {}
    updated[head] = write_nested(updated.get(head, MISSING), rest, new_value)
    return updated


def remove_nested(root_value: Any, segments: List[str]) -> Any:
    """
    Return a copy of ``root_value`` without the field at ``segments``.

    Missing intermediates make this a no-op: ``root_value`` itself is
    returned, so callers can detect "nothing removed" by identity.
    With no segments the whole value is removed and ``MISSING`` is returned.
    """
    if not segments:
        return MISSING
    if not isinstance(root_value, dict) or segments[0] not in root_value:
        return root_value

    head, rest = segments[0], segments[1:]
    updated = dict(root_value)
    if not rest:
        del updated[head]
        return updated

    child = root_value[head]
    pruned = remove_nested(child, rest)
    if pruned is child:
        return root_value
    updated[head] = pruned
    return updated
