"""Dotted-path access into nested dicts and lists (``a.b[0].c``)."""

from __future__ import annotations

import re
from typing import Any

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(-?\d+)\]")

_MISSING = object()


def split_path(path: str) -> list[str | int]:
    """Split ``a.b[0].c`` into ``["a", "b", 0, "c"]``."""
    segments: list[str | int] = []
    for name, index in _SEGMENT_RE.findall(path):
        if index:
            segments.append(int(index))
        else:
            segments.append(name)
    return segments


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Read a nested value, returning ``default`` when any segment is missing."""
    current = data
    for segment in split_path(path):
        if isinstance(segment, int):
            if not isinstance(current, list):
                return default
            try:
                current = current[segment]
            except IndexError:
                return default
        else:
            if not isinstance(current, dict):
                return default
            current = current.get(segment, _MISSING)
            if current is _MISSING:
                return default
    return current


def set_path(data: dict, path: str, value: Any) -> dict:
    """Write a nested value in place, creating intermediate containers.

    Returns ``data`` so callers can chain on a fresh copy.
    """
    segments = split_path(path)
    if not segments:
        raise ValueError("empty path")
    current: Any = data
    for segment, following in zip(segments, segments[1:]):
        container = [] if isinstance(following, int) else {}
        if isinstance(segment, int):
            while len(current) <= segment:
                current.append(None)
            if not isinstance(current[segment], (dict, list)):
                current[segment] = container
            current = current[segment]
        else:
            if not isinstance(current.get(segment), (dict, list)):
                current[segment] = container
            current = current[segment]
    last = segments[-1]
    if isinstance(last, int):
        while len(current) <= last:
            current.append(None)
    current[last] = value
    return data
