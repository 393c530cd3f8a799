"""Declarative mapping templates.

A mapping template is plain JSON data describing how to reshape a source
document. It is compiled once into a small AST and evaluated by an
interpreter; no template text is ever executed.

Grammar:

- ``"$..."``: a path into the source: ``$``, ``.key``, ``['key']``,
  ``[0]`` / ``[-1]``, ``[*]`` (fans the rest of the path out over a list).
  A missing path evaluates to ``None``.
- ``{"$path": "$.a", "$default": 1}``: a path with a fallback value.
- ``{"$each": "$.items", "$map": template}``: maps every element of a list,
  evaluating ``template`` with the element as the root.
- ``{"$concat": [template, ...], "$sep": " "}``: joins the string forms.
- ``{"$literal": value}``: ``value``, unevaluated.
- any other dict is an object template, any list a list template, any other
  scalar a literal.

Example::

    template = {"greeting": {"$concat": ["hi", "$.name"], "$sep": " "}}
    apply_mapping(template, {"name": "Ann"})  # {"greeting": "hi Ann"}
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from semflow.context import CallContext
from semflow.errors import MappingError, error_list

logger = logging.getLogger(__name__)

OPERATORS = {"$path", "$default", "$each", "$map", "$concat", "$sep", "$literal"}

_TOKEN_RE = re.compile(
    r"""
    \.(?P<key>[^.\[\]]+)
    | \[\s*'(?P<squoted>[^']*)'\s*\]
    | \[\s*"(?P<dquoted>[^"]*)"\s*\]
    | \[\s*(?P<index>-?\d+)\s*\]
    | \[\s*(?P<wildcard>\*)\s*\]
    """,
    re.VERBOSE,
)

_WILDCARD = object()


# --- AST ---


class Node:
    def evaluate(self, root: Any) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, root: Any) -> Any:
        return self.value


@dataclass(frozen=True)
class Path(Node):
    segments: tuple
    default: Any = None

    def evaluate(self, root: Any) -> Any:
        value = _walk(root, self.segments)
        return self.default if value is None else value


@dataclass(frozen=True)
class ObjectTemplate(Node):
    fields: tuple[tuple[str, Node], ...]

    def evaluate(self, root: Any) -> Any:
        return {key: node.evaluate(root) for key, node in self.fields}


@dataclass(frozen=True)
class ListTemplate(Node):
    items: tuple[Node, ...]

    def evaluate(self, root: Any) -> Any:
        return [node.evaluate(root) for node in self.items]


@dataclass(frozen=True)
class Each(Node):
    source: Node
    template: Node

    def evaluate(self, root: Any) -> Any:
        items = self.source.evaluate(root)
        if items is None:
            return []
        if not isinstance(items, list):
            raise MappingError(f"$each expects a list, got {type(items).__name__}")
        return [self.template.evaluate(item) for item in items]


@dataclass(frozen=True)
class Concat(Node):
    parts: tuple[Node, ...]
    sep: str = ""

    def evaluate(self, root: Any) -> Any:
        rendered = []
        for part in self.parts:
            value = part.evaluate(root)
            if value is None:
                continue
            rendered.append(value if isinstance(value, str) else json.dumps(value))
        return self.sep.join(rendered)


def _walk(value: Any, segments: tuple) -> Any:
    for i, segment in enumerate(segments):
        if segment is _WILDCARD:
            if not isinstance(value, list):
                return None
            rest = segments[i + 1:]
            return [_walk(item, rest) for item in value]
        if isinstance(segment, int):
            if not isinstance(value, list):
                return None
            try:
                value = value[segment]
            except IndexError:
                return None
        else:
            if not isinstance(value, dict):
                return None
            value = value.get(segment)
        if value is None:
            return None
    return value


# --- compiler ---


def parse_path(expr: str) -> tuple:
    """Parse ``$.a['b'][0][*]`` into path segments."""
    if not expr.startswith("$"):
        raise MappingError(f"path must start with '$': {expr!r}")
    segments: list[Any] = []
    pos = 1
    while pos < len(expr):
        match = _TOKEN_RE.match(expr, pos)
        if match is None:
            raise MappingError(f"malformed path {expr!r} at position {pos}")
        if match.group("key") is not None:
            segments.append(match.group("key"))
        elif match.group("squoted") is not None:
            segments.append(match.group("squoted"))
        elif match.group("dquoted") is not None:
            segments.append(match.group("dquoted"))
        elif match.group("index") is not None:
            segments.append(int(match.group("index")))
        else:
            segments.append(_WILDCARD)
        pos = match.end()
    return tuple(segments)


def _compile(template: Any) -> Node:
    if isinstance(template, str):
        if template.startswith("$"):
            return Path(parse_path(template))
        return Literal(template)
    if isinstance(template, list):
        return ListTemplate(tuple(_compile(item) for item in template))
    if not isinstance(template, dict):
        return Literal(template)

    operators = {key for key in template if key.startswith("$")}
    if not operators:
        return ObjectTemplate(tuple((key, _compile(value)) for key, value in template.items()))
    unknown = operators - OPERATORS
    if unknown:
        raise MappingError(f"unknown mapping operator(s): {', '.join(sorted(unknown))}")
    if operators != set(template):
        raise MappingError("mapping operators cannot be mixed with plain keys")

    if "$literal" in operators:
        return Literal(template["$literal"])
    if "$path" in operators:
        expr = template["$path"]
        if not isinstance(expr, str):
            raise MappingError("$path must be a string")
        return Path(parse_path(expr), template.get("$default"))
    if "$each" in operators:
        if "$map" not in operators:
            raise MappingError("$each requires $map")
        return Each(_compile(template["$each"]), _compile(template["$map"]))
    if "$concat" in operators:
        parts = template["$concat"]
        if not isinstance(parts, list):
            raise MappingError("$concat must be a list")
        sep = template.get("$sep", "")
        if not isinstance(sep, str):
            raise MappingError("$sep must be a string")
        return Concat(tuple(_compile(p) for p in parts), sep)
    raise MappingError(f"incomplete mapping operator: {', '.join(sorted(operators))}")


@lru_cache(maxsize=256)
def _compile_text(text: str) -> Node:
    return _compile(json.loads(text))


def compile_mapping(template: Any) -> Node:
    """Compile a template (JSON data or a JSON string) into an AST. Cached."""
    if isinstance(template, Node):
        return template
    if isinstance(template, str) and not template.startswith("$"):
        try:
            template = json.loads(template)
        except json.JSONDecodeError as e:
            raise MappingError(f"invalid mapping template: {e}") from e
    try:
        text = json.dumps(template, sort_keys=True)
    except TypeError as e:
        raise MappingError(f"mapping template is not JSON data: {e}") from e
    return _compile_text(text)


def apply_mapping(template: Any, source: Any, is_batch: bool = False) -> Any:
    """Evaluate ``template`` against ``source`` (each element in batch mode)."""
    node = compile_mapping(template)
    if is_batch and isinstance(source, list):
        return [node.evaluate(item) for item in source]
    return node.evaluate(source)


def map_args(
    template: Any,
    args: Any,
    ctx: CallContext,
    is_batch: bool = False,
    source: dict | None = None,
) -> Any:
    """Apply an argument mapping and report it through ``on_map_arguments``."""
    try:
        mapped = apply_mapping(template, args, is_batch)
    except MappingError as e:
        ctx.notify(
            "on_map_arguments",
            source=source,
            args=args,
            mapping_template=template,
            is_batch=is_batch,
            errors=error_list(e),
        )
        raise
    logger.debug("mapped args: %s", mapped)
    ctx.notify(
        "on_map_arguments",
        source=source,
        args=args,
        mapped=mapped,
        mapping_template=template,
        is_batch=is_batch,
    )
    return mapped


def map_return_type(template: Any, response: Any, ctx: CallContext) -> Any:
    """Apply a return mapping and report it through ``on_map_return_type``."""
    try:
        mapped = apply_mapping(template, response)
    except MappingError as e:
        ctx.notify(
            "on_map_return_type",
            response=response,
            mapping_template=template,
            errors=error_list(e),
        )
        raise
    ctx.notify(
        "on_map_return_type",
        response=response,
        mapped=mapped,
        mapping_template=template,
    )
    return mapped
