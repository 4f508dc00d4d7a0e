"""Tests for state schema defaults, validation and per-field merge strategies."""

from typing import Any, Dict, Optional

import pytest

from promptgraph.graph.errors import StateError
from promptgraph.graph.state import (
    MergeStrategy,
    StateField,
    StateSchema,
    read_only_view,
)


@pytest.fixture
def schema():
    return StateSchema(
        StateField("topic", str, default=""),
        StateField("quality", Optional[int]),
        StateField("preferences", Dict[str, Any], merge=MergeStrategy.NESTED_MERGE),
        StateField("notes", list, default_factory=list),
    )


def test_initial_fills_defaults(schema):
    state = schema.initial()

    assert state == {"topic": "", "quality": None, "preferences": {}, "notes": []}


def test_initial_copies_seed_values(schema):
    prefs = {"tone": "casual", "nested": {"a": 1}}
    state = schema.initial({"preferences": prefs})

    prefs["nested"]["a"] = 2
    assert state["preferences"] == {"tone": "casual", "nested": {"a": 1}}


def test_initial_rejects_unknown_seed_field(schema):
    with pytest.raises(StateError) as exc_info:
        schema.initial({"topic": "x", "colour": "blue"})

    assert exc_info.value.field == "colour"


def test_initial_validates_seed_types(schema):
    with pytest.raises(StateError):
        schema.initial({"quality": "not a number"})


def test_default_factory_values_are_not_shared(schema):
    first = schema.initial()
    second = schema.initial()

    first["notes"].append("x")
    assert second["notes"] == []


def test_overwrite_replaces_value(schema):
    state = schema.initial({"topic": "old"})

    merged = schema.merge(state, {"topic": "new"})

    assert merged["topic"] == "new"


def test_repeating_a_merge_changes_nothing(schema):
    state = schema.initial({"topic": "old", "preferences": {"x": 1}})
    partial = {"topic": "new", "quality": 5, "preferences": {"y": 2}}

    once = schema.merge(state, partial)
    twice = schema.merge(once, partial)

    assert twice == once
    assert once["preferences"] == {"x": 1, "y": 2}


def test_merge_does_not_mutate_current(schema):
    state = schema.initial({"topic": "old", "preferences": {"tone": "formal"}})

    schema.merge(state, {"topic": "new", "preferences": {"language": "fr"}})

    assert state["topic"] == "old"
    assert state["preferences"] == {"tone": "formal"}


def test_nested_merge_keeps_absent_keys(schema):
    state = schema.initial(
        {"preferences": {"language": "en", "tone": "formal", "interests": ["a"]}}
    )

    merged = schema.merge(state, {"preferences": {"tone": "casual"}})

    assert merged["preferences"] == {
        "language": "en",
        "tone": "casual",
        "interests": ["a"],
    }


def test_nested_merge_recurses_into_mappings(schema):
    state = schema.initial({"preferences": {"display": {"font": "serif", "size": 12}}})

    merged = schema.merge(state, {"preferences": {"display": {"size": 14}}})

    assert merged["preferences"]["display"] == {"font": "serif", "size": 14}


def test_nested_merge_treats_none_as_empty():
    schema = StateSchema(
        StateField("meta", Optional[Dict[str, Any]], merge=MergeStrategy.NESTED_MERGE, default=None)
    )
    state = {"meta": None}

    merged = schema.merge(state, {"meta": {"k": "v"}})

    assert merged["meta"] == {"k": "v"}


def test_nested_merge_requires_mapping(schema):
    state = schema.initial()

    with pytest.raises(StateError):
        schema.merge(state, {"preferences": ["not", "a", "mapping"]})


def test_absent_fields_carry_over(schema):
    state = schema.initial({"topic": "kept", "quality": 3})

    merged = schema.merge(state, {"notes": ["n"]})

    assert merged["topic"] == "kept"
    assert merged["quality"] == 3


def test_empty_and_none_partials_are_no_ops(schema):
    state = schema.initial({"topic": "t"})

    assert schema.merge(state, {}) == state
    assert schema.merge(state, None) == state


def test_merge_rejects_unknown_field(schema):
    with pytest.raises(StateError) as exc_info:
        schema.merge(schema.initial(), {"bogus": 1})

    assert exc_info.value.field == "bogus"


def test_merge_validates_types(schema):
    with pytest.raises(StateError):
        schema.merge(schema.initial(), {"quality": "high"})


def test_duplicate_field_names_rejected():
    with pytest.raises(ValueError):
        StateSchema(StateField("a"), StateField("a"))


def test_merge_table_lists_strategies(schema):
    table = schema.merge_table()

    assert table["topic"] == MergeStrategy.OVERWRITE
    assert table["preferences"] == MergeStrategy.NESTED_MERGE


def test_read_only_view_is_detached_and_immutable(schema):
    state = schema.initial({"preferences": {"tone": "formal"}})
    view = read_only_view(state)

    with pytest.raises(TypeError):
        view["topic"] = "changed"
    view["preferences"]["tone"] = "casual"

    assert state["preferences"]["tone"] == "formal"
