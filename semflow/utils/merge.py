"""Deep merge used for fan-in of composition results."""

from __future__ import annotations

import copy
from typing import Any


def deep_merge(target: Any, source: Any) -> Any:
    """Merge ``source`` into a copy of ``target`` and return the result.

    - dict + dict: keys are merged recursively
    - list + list: concatenated (target first)
    - anything else: ``source`` wins

    Neither argument is mutated.
    """
    if isinstance(target, dict) and isinstance(source, dict):
        merged = {key: copy.deepcopy(value) for key, value in target.items()}
        for key, value in source.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    if isinstance(target, list) and isinstance(source, list):
        return copy.deepcopy(target) + copy.deepcopy(source)
    return copy.deepcopy(source)
