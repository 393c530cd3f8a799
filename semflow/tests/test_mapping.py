"""Tests for declarative mapping templates."""

import pytest

from semflow.context import CallContext
from semflow.errors import MappingError
from semflow.mapping import apply_mapping, compile_mapping, map_args, map_return_type, parse_path


class RecordingCallback:
    def __init__(self):
        self.calls = []

    def on_map_arguments(self, **kwargs):
        self.calls.append(("on_map_arguments", kwargs))

    def on_map_return_type(self, **kwargs):
        self.calls.append(("on_map_return_type", kwargs))


class TestParsePath:
    """Test path expression parsing."""

    def test_root(self):
        """A bare '$' has no segments."""
        assert parse_path("$") == ()

    def test_mixed_segments(self):
        """Dotted keys, quoted keys and indexes are all supported."""
        assert parse_path("$.a['b c'][0][-1]") == ("a", "b c", 0, -1)

    def test_rejects_missing_dollar(self):
        """Paths must start at the root."""
        with pytest.raises(MappingError):
            parse_path("a.b")

    def test_rejects_malformed(self):
        """Unbalanced brackets are an error."""
        with pytest.raises(MappingError):
            parse_path("$.a[")


class TestApplyMapping:
    """Test template evaluation."""

    def test_object_template(self):
        """Object templates evaluate every field."""
        template = {"name": "$.user.name", "kind": "person"}
        result = apply_mapping(template, {"user": {"name": "Ann"}})
        assert result == {"name": "Ann", "kind": "person"}

    def test_missing_path_is_none(self):
        """A missing path evaluates to None instead of raising."""
        assert apply_mapping({"x": "$.a.b.c"}, {"a": 1}) == {"x": None}

    def test_default(self):
        """$default fills in for a missing value."""
        template = {"x": {"$path": "$.missing", "$default": 7}}
        assert apply_mapping(template, {}) == {"x": 7}

    def test_wildcard(self):
        """[*] fans the rest of the path out over a list."""
        source = {"items": [{"id": 1}, {"id": 2}]}
        assert apply_mapping("$.items[*].id", source) == [1, 2]

    def test_each(self):
        """$each maps a sub-template over every list element."""
        template = {"$each": "$.people", "$map": {"n": "$.name"}}
        source = {"people": [{"name": "Ann"}, {"name": "Bo"}]}
        assert apply_mapping(template, source) == [{"n": "Ann"}, {"n": "Bo"}]

    def test_each_requires_list(self):
        """$each over a non-list is an error."""
        with pytest.raises(MappingError):
            apply_mapping({"$each": "$.x", "$map": "$"}, {"x": 3})

    def test_concat(self):
        """$concat joins string forms, skipping missing values."""
        template = {"$concat": ["hi", "$.name", "$.missing"], "$sep": " "}
        assert apply_mapping(template, {"name": "Ann"}) == "hi Ann"

    def test_literal(self):
        """$literal values are not interpreted."""
        assert apply_mapping({"$literal": "$.not.a.path"}, {}) == "$.not.a.path"

    def test_json_string_template(self):
        """Templates may be given as JSON text."""
        assert apply_mapping('{"a": "$.b"}', {"b": 2}) == {"a": 2}

    def test_batch(self):
        """In batch mode the template applies to each element."""
        result = apply_mapping({"t": "$.text"}, [{"text": "a"}, {"text": "b"}], is_batch=True)
        assert result == [{"t": "a"}, {"t": "b"}]

    def test_unknown_operator(self):
        """Unknown $ operators are rejected at compile time."""
        with pytest.raises(MappingError):
            compile_mapping({"$eval": "1 + 1"})

    def test_mixed_operator_and_keys(self):
        """Operators cannot share a dict with plain keys."""
        with pytest.raises(MappingError):
            compile_mapping({"$path": "$.a", "b": 1})

    def test_compile_is_cached(self):
        """Equal templates compile to the same AST object."""
        assert compile_mapping({"a": "$.b"}) is compile_mapping({"a": "$.b"})


class TestMapCallbacks:
    """Test mapping callback notifications."""

    def setup_method(self):
        self.callback = RecordingCallback()
        self.ctx = CallContext(callbacks=[self.callback])

    def test_map_args_notifies(self):
        """map_args reports source, args and mapped result."""
        mapped = map_args({"q": "$.content"}, {"content": "x"}, self.ctx, source={"type": "function"})
        assert mapped == {"q": "x"}
        hook, payload = self.callback.calls[0]
        assert hook == "on_map_arguments"
        assert payload["mapped"] == {"q": "x"}
        assert payload["source"] == {"type": "function"}

    def test_map_args_error_notifies_and_raises(self):
        """A mapping failure is reported, then re-raised."""
        with pytest.raises(MappingError):
            map_args({"$bogus": 1}, {}, self.ctx)
        hook, payload = self.callback.calls[0]
        assert hook == "on_map_arguments"
        assert payload["errors"]

    def test_map_return_type_notifies(self):
        """map_return_type reports the mapped response."""
        assert map_return_type("$.a", {"a": 1}, self.ctx) == 1
        assert self.callback.calls[0][0] == "on_map_return_type"
