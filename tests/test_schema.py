"""Tests for Notion schema to column mapping."""

from notion_mirror.schemas.notion import ColumnDefinition, DestinationType, PropertyKind
from notion_mirror.services.schema import (
    BASE_COLUMNS,
    create_schema_summary,
    diff,
    extract_column_definitions,
    find_collisions,
    map_type,
    normalize_name,
    validate_column_definitions,
)


class TestNormalizeName:

    def test_simple_name(self):
        assert normalize_name("Status") == "status"

    def test_spaces_and_punctuation(self):
        assert normalize_name("Due Date (UTC)") == "due_date_utc"

    def test_leading_and_trailing_separators_are_stripped(self):
        assert normalize_name("  #Tags!  ") == "tags"

    def test_runs_collapse_to_one_underscore(self):
        assert normalize_name("a -- b") == "a_b"

    def test_non_ascii_only_name_normalizes_to_empty(self):
        assert normalize_name("日本") == ""

    def test_idempotent(self):
        for name in ["Due Date", "A/B test", "  x  ", "already_snake", "Mixed-Case Name 2"]:
            once = normalize_name(name)
            assert normalize_name(once) == once


class TestMapType:

    def test_known_types(self):
        assert map_type("title") == DestinationType.TEXT
        assert map_type("multi_select") == DestinationType.TEXT_ARRAY
        assert map_type("people") == DestinationType.TEXT_ARRAY
        assert map_type("date") == DestinationType.TIMESTAMPTZ
        assert map_type("checkbox") == DestinationType.BOOLEAN
        assert map_type("number") == DestinationType.NUMERIC

    def test_formula_and_rollup_are_text(self):
        assert map_type("formula") == DestinationType.TEXT
        assert map_type("rollup") == DestinationType.TEXT

    def test_unknown_type_falls_back_to_text(self):
        assert map_type("unique_id") == DestinationType.TEXT
        assert map_type(None) == DestinationType.TEXT

    def test_accepts_property_kind(self):
        assert map_type(PropertyKind.LAST_EDITED_TIME) == DestinationType.TIMESTAMPTZ

    def test_parse_never_raises(self):
        assert PropertyKind.parse("button") == PropertyKind.UNKNOWN
        assert PropertyKind.parse(42) == PropertyKind.UNKNOWN


class TestExtractColumnDefinitions:

    def test_keeps_schema_order(self):
        columns = extract_column_definitions({"Name": "title", "Score": "number", "Done": "checkbox"})
        assert [c.name for c in columns] == ["name", "score", "done"]
        assert columns[1] == ColumnDefinition("score", DestinationType.NUMERIC, "Score", "number")

    def test_skips_names_without_usable_characters(self):
        columns = extract_column_definitions({"!!!": "rich_text", "Ok": "rich_text"})
        assert [c.name for c in columns] == ["ok"]


class TestDiff:

    def _cols(self, schema):
        return extract_column_definitions(schema)

    def test_returns_only_absent_columns(self):
        required = self._cols({"Name": "title", "Status": "select", "Score": "number"})
        missing = diff(required, ["id", "notion_id", "name"])
        assert [c.name for c in missing] == ["status", "score"]

    def test_nothing_missing(self):
        required = self._cols({"Name": "title"})
        assert diff(required, BASE_COLUMNS + ["name"]) == []

    def test_colliding_properties_yield_one_column(self):
        required = self._cols({"Due Date": "date", "due-date": "date"})
        missing = diff(required, BASE_COLUMNS)
        assert [c.name for c in missing] == ["due_date"]

    def test_every_missing_name_is_absent_from_existing(self):
        required = self._cols({"A": "title", "B": "number", "C": "date", "D": "files"})
        existing = ["id", "b", "d"]
        missing = diff(required, existing)
        assert all(c.name not in existing for c in missing)
        assert {c.name for c in missing} | set(existing) >= {c.name for c in required}


class TestCollisionsAndValidation:

    def test_find_collisions(self):
        collisions = find_collisions(["Due Date", "due_date", "Owner"])
        assert collisions == {"due_date": ["Due Date", "due_date"]}

    def test_reserved_keyword_is_still_valid(self):
        columns = extract_column_definitions({"Order": "number"})
        assert validate_column_definitions(columns) is True

    def test_schema_summary(self):
        missing = extract_column_definitions({"Tags": "multi_select"})
        summary = create_schema_summary(missing, ["id", "notion_id"])
        assert summary["total_columns"] == 3
        assert summary["new_columns"] == 1
        assert summary["columns_to_create"][0] == {
            "name": "tags", "type": "text_array", "original_name": "Tags",
        }
