"""Utility functions."""

from semflow.utils.identifiers import (
    generate_frame_id,
    generate_function_id,
    generate_response_id,
    now_millis,
    readable_elapsed,
    utc_timestamp,
)
from semflow.utils.merge import deep_merge
from semflow.utils.paths import get_path, set_path, split_path
from semflow.utils.text import PARA_DELIM, get_input, hash_str

__all__ = [
    "generate_frame_id",
    "generate_function_id",
    "generate_response_id",
    "now_millis",
    "readable_elapsed",
    "utc_timestamp",
    "deep_merge",
    "get_path",
    "set_path",
    "split_path",
    "PARA_DELIM",
    "get_input",
    "hash_str",
]
