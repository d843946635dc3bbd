"""Schema mapping between Notion database properties and destination columns.

Everything in this module is pure: existing columns are passed in, never
looked up.
"""

import logging
import re
from typing import Iterable

from notion_mirror.schemas.notion import ColumnDefinition, DestinationType, PropertyKind

logger = logging.getLogger(__name__)

TYPE_MAP: dict[PropertyKind, DestinationType] = {
    PropertyKind.TITLE: DestinationType.TEXT,
    PropertyKind.RICH_TEXT: DestinationType.TEXT,
    PropertyKind.SELECT: DestinationType.TEXT,
    PropertyKind.STATUS: DestinationType.TEXT,
    PropertyKind.URL: DestinationType.TEXT,
    PropertyKind.EMAIL: DestinationType.TEXT,
    PropertyKind.PHONE_NUMBER: DestinationType.TEXT,
    PropertyKind.CREATED_BY: DestinationType.TEXT,
    PropertyKind.LAST_EDITED_BY: DestinationType.TEXT,
    PropertyKind.MULTI_SELECT: DestinationType.TEXT_ARRAY,
    PropertyKind.PEOPLE: DestinationType.TEXT_ARRAY,
    PropertyKind.RELATION: DestinationType.TEXT_ARRAY,
    PropertyKind.FILES: DestinationType.TEXT_ARRAY,
    PropertyKind.DATE: DestinationType.TIMESTAMPTZ,
    PropertyKind.CREATED_TIME: DestinationType.TIMESTAMPTZ,
    PropertyKind.LAST_EDITED_TIME: DestinationType.TIMESTAMPTZ,
    PropertyKind.CHECKBOX: DestinationType.BOOLEAN,
    PropertyKind.NUMBER: DestinationType.NUMERIC,
    # Formula and rollup results vary per row
    PropertyKind.FORMULA: DestinationType.TEXT,
    PropertyKind.ROLLUP: DestinationType.TEXT,
}

# Columns every mirror table has before any property is provisioned.
BASE_COLUMNS = ["id", "notion_id", "created_at", "updated_at", "last_edited_time"]

RESERVED_KEYWORDS = {"order", "group", "select", "where", "from", "table", "user", "limit"}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def map_type(notion_type) -> DestinationType:
    """Map a Notion property type to a destination column type."""
    kind = PropertyKind.parse(notion_type)
    dest = TYPE_MAP.get(kind)
    if dest is None:
        logger.warning(f"Unknown Notion type: {notion_type}, defaulting to text")
        return DestinationType.TEXT
    return dest


def normalize_name(name: str) -> str:
    """Normalize a property name to a snake_case column name."""
    return _NON_ALNUM.sub("_", name.lower()).strip("_")


def extract_column_definitions(schema: dict[str, str]) -> list[ColumnDefinition]:
    """
    Build column definitions from a collection schema.

    Args:
        schema: Ordered mapping of property name to Notion property type.
    """
    columns = []
    for property_name, notion_type in schema.items():
        column_name = normalize_name(property_name)
        if not column_name:
            logger.warning(f"Property '{property_name}' has no usable column name, skipping")
            continue
        columns.append(ColumnDefinition(
            name=column_name,
            type=map_type(notion_type),
            original_name=property_name,
            notion_type=str(notion_type),
        ))
        logger.debug(f"Column definition: {property_name} -> {column_name} ({notion_type})")
    return columns


def find_collisions(property_names: Iterable[str]) -> dict[str, list[str]]:
    """Return normalized names claimed by more than one property."""
    claimed: dict[str, list[str]] = {}
    for name in property_names:
        claimed.setdefault(normalize_name(name), []).append(name)
    return {column: names for column, names in claimed.items() if len(names) > 1}


def diff(required: list[ColumnDefinition], existing: Iterable[str]) -> list[ColumnDefinition]:
    """
    Columns from `required` whose normalized name is absent from `existing`.

    Order of `required` is kept; a normalized name appears at most once.
    """
    present = set(existing)
    missing = []
    seen = set()
    for column in required:
        name = normalize_name(column.name)
        if name in present or name in seen:
            continue
        seen.add(name)
        missing.append(column)
    return missing


def validate_column_definitions(columns: list[ColumnDefinition]) -> bool:
    """Check definitions are usable; warn on names that clash with SQL keywords."""
    for column in columns:
        if not column.name or not column.type:
            logger.error(f"Invalid column definition: {column}")
            return False
        if column.name in RESERVED_KEYWORDS:
            logger.warning(f"Column name '{column.name}' might conflict with SQL keywords")
    return True


def create_schema_summary(missing: list[ColumnDefinition], existing: list[str]) -> dict:
    """Summarize a planned schema change for logs and sync results."""
    return {
        "total_columns": len(existing) + len(missing),
        "existing_columns": len(existing),
        "new_columns": len(missing),
        "columns_to_create": [
            {"name": c.name, "type": c.type.value, "original_name": c.original_name}
            for c in missing
        ],
    }
