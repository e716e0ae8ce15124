"""
Unit tests for JSON value conversion.
"""

import json
import math
from dataclasses import dataclass

import pytest

from jsonpush.errors import UsageError
from jsonpush.values import FUNCTION_PLACEHOLDER, to_json_string, to_json_value


class Opaque:
    pass


@dataclass
class Point:
    x: int
    y: int


class TestToJSONValue:
    """Tests for to_json_value()."""

    @pytest.mark.parametrize("value", [None, True, False, 0, -7, 1.5, "text"])
    def test_scalars_pass_through(self, value):
        assert to_json_value(value) == value

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_floats_become_null(self, value):
        assert to_json_value(value) is None

    def test_one_based_integer_keys_become_array(self):
        assert to_json_value({1: "a", 2: "b", 3: "c"}) == ["a", "b", "c"]

    def test_unordered_one_based_keys_become_ordered_array(self):
        assert to_json_value({3: "c", 1: "a", 2: "b"}) == ["a", "b", "c"]

    def test_sparse_integer_keys_become_object(self):
        assert to_json_value({1: "a", 3: "c"}) == {"1": "a", "3": "c"}

    def test_zero_based_keys_become_object(self):
        assert to_json_value({0: "a", 1: "b"}) == {"0": "a", "1": "b"}

    def test_mixed_keys_become_object(self):
        assert to_json_value({1: "a", "name": "b"}) == {"1": "a", "name": "b"}

    def test_empty_mapping_is_object(self):
        assert to_json_value({}) == {}

    def test_sequences_become_arrays(self):
        assert to_json_value((1, [2, (3,)])) == [1, [2, [3]]]

    def test_sets_become_arrays(self):
        assert sorted(to_json_value({3, 1, 2})) == [1, 2, 3]

    def test_nested_structures(self):
        value = {"player": {"name": "Urist", "skills": {1: "mining", 2: "masonry"}}}

        assert to_json_value(value) == {
            "player": {"name": "Urist", "skills": ["mining", "masonry"]}
        }

    def test_callables_become_placeholder_and_are_not_called(self):
        calls = []

        def callback():
            calls.append(1)

        assert to_json_value({"cb": callback, "fn": len}) == {
            "cb": FUNCTION_PLACEHOLDER,
            "fn": FUNCTION_PLACEHOLDER,
        }
        assert calls == []

    def test_unknown_objects_become_type_placeholder(self):
        assert to_json_value(Opaque()) == "<Opaque>"

    def test_dataclasses_become_objects(self):
        assert to_json_value(Point(1, 2)) == {"x": 1, "y": 2}

    def test_bytes_become_strings(self):
        assert to_json_value(b"caf\xc3\xa9") == "café"

    def test_cycles_are_rejected(self):
        value = []
        value.append(value)

        with pytest.raises(UsageError):
            to_json_value(value)


class TestToJSONString:
    """Tests for to_json_string()."""

    def test_pretty_output_is_indented_and_sorted(self):
        text = to_json_string({"b": 1, "a": [1, 2]})

        assert text.index('"a"') < text.index('"b"')
        assert "\n" in text
        assert json.loads(text) == {"a": [1, 2], "b": 1}

    def test_compact_output(self):
        assert to_json_string({"b": 1, "a": None}, pretty=False) == '{"a":null,"b":1}'

    def test_output_is_always_valid_json(self):
        text = to_json_string({"f": math.nan, "obj": Opaque(), "fn": print})

        assert json.loads(text) == {"f": None, "fn": FUNCTION_PLACEHOLDER, "obj": "<Opaque>"}

    def test_unicode_kept(self):
        assert to_json_string("dwarf ☼", pretty=False) == '"dwarf ☼"'
