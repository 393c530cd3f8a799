"""Small text helpers shared by the dispatch layer."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable

PARA_DELIM = "\n\n"

# keys checked, in order, when no explicit content property is configured
DEFAULT_CONTENT_KEYS = ("content", "text", "input", "query")

ALL_PROPS = "__all"


def hash_str(text: str) -> str:
    """Stable hash used to de-duplicate batch inputs."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _input_from_instance(instance: Any, content_prop: str | None) -> str | None:
    if instance is None:
        return None
    if isinstance(instance, str):
        return instance
    if not isinstance(instance, dict):
        return str(instance)
    if content_prop == ALL_PROPS:
        return json.dumps(instance, sort_keys=True)
    if content_prop:
        value = instance.get(content_prop)
        return None if value is None else str(value)
    for key in DEFAULT_CONTENT_KEYS:
        value = instance.get(key)
        if value is not None:
            return str(value)
    return None


def get_input(args: Any, is_batch: bool = False, options: dict | None = None) -> Any:
    """Derive the user text (or list of texts in batch mode) from call args."""
    content_prop = (options or {}).get("content_prop")
    if is_batch:
        if not isinstance(args, list):
            return None
        return [_input_from_instance(a, content_prop) for a in args]
    return _input_from_instance(args, content_prop)


def bin_pack_texts_in_order(
    texts: list[str],
    max_tokens: float,
    count_tokens: Callable[[str], int],
) -> list[list[str]]:
    """Greedily pack texts into consecutive bins that stay under ``max_tokens``.

    Order is preserved. A single text larger than the limit gets its own bin.
    """
    bins: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for text in texts:
        n = count_tokens(text if isinstance(text, str) else json.dumps(text))
        if current and current_tokens + n > max_tokens:
            bins.append(current)
            current = []
            current_tokens = 0
        current.append(text)
        current_tokens += n
    if current:
        bins.append(current)
    return bins
