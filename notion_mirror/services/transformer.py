"""Transform Notion property values and pages into destination rows."""

import logging
from typing import Any, Optional

from notion_mirror.schemas.notion import PropertyKind, Record
from notion_mirror.services.schema import normalize_name

logger = logging.getLogger(__name__)


def extract_text_content(text_runs: Any) -> str:
    """Concatenate plain_text of a rich text array. Not a list -> empty string."""
    if not isinstance(text_runs, list):
        return ""
    return "".join((run or {}).get("plain_text") or "" for run in text_runs).strip()


def _option_name(option: Optional[dict]) -> Optional[str]:
    if not option:
        return None
    return option.get("name")


def _date_start(value: Optional[dict]) -> Optional[str]:
    if not value:
        return None
    return value.get("start")


def _user_id(user: Optional[dict]) -> Optional[str]:
    if not user:
        return None
    return user.get("id")


def _file_url(entry: Optional[dict]) -> Optional[str]:
    """Resolve a files entry from whichever of 'external' / 'file' it carries."""
    if not entry:
        return None
    file_type = entry.get("type")
    if file_type == "external":
        return (entry.get("external") or {}).get("url")
    if file_type == "file":
        return (entry.get("file") or {}).get("url")
    return None


def transform_files(files: Any) -> list[str]:
    if not isinstance(files, list):
        return []
    return [url for url in (_file_url(f) for f in files) if url]


def transform_people(people: Any) -> list[str]:
    if not isinstance(people, list):
        return []
    return [pid for pid in (_user_id(p) for p in people) if pid]


def transform_formula(formula: Optional[dict]) -> Any:
    """Formula results dispatch on their own result type."""
    if not formula:
        return None
    result_type = formula.get("type")
    if result_type == "string":
        return formula.get("string") or ""
    if result_type == "number":
        return formula.get("number")
    if result_type == "boolean":
        return bool(formula.get("boolean"))
    if result_type == "date":
        return _date_start(formula.get("date"))
    return None


def transform_rollup(rollup: Optional[dict]) -> Any:
    if not rollup:
        return None
    result_type = rollup.get("type")
    if result_type == "array":
        return [transform_notion_property(item) for item in rollup.get("array") or []]
    if result_type == "number":
        return rollup.get("number")
    if result_type == "date":
        return _date_start(rollup.get("date"))
    return None


def transform_property(kind, value: Any) -> Any:
    """
    Transform one Notion property payload into a destination value.

    Args:
        kind: Notion property type (PropertyKind or raw tag).
        value: The type-specific payload, i.e. property[property["type"]].

    Returns:
        The destination value, or None. Never raises.
    """
    parsed = PropertyKind.parse(kind)
    try:
        if parsed in (PropertyKind.TITLE, PropertyKind.RICH_TEXT):
            return extract_text_content(value)
        if parsed in (PropertyKind.SELECT, PropertyKind.STATUS):
            return _option_name(value)
        if parsed == PropertyKind.MULTI_SELECT:
            return [name for name in (_option_name(o) for o in value or []) if name is not None]
        if parsed == PropertyKind.DATE:
            return _date_start(value)
        if parsed == PropertyKind.CHECKBOX:
            return bool(value)
        if parsed == PropertyKind.NUMBER:
            return value
        if parsed in (PropertyKind.URL, PropertyKind.EMAIL, PropertyKind.PHONE_NUMBER):
            return value or None
        if parsed == PropertyKind.FILES:
            return transform_files(value)
        if parsed == PropertyKind.PEOPLE:
            return transform_people(value)
        if parsed == PropertyKind.RELATION:
            return [rel_id for rel_id in (_user_id(r) for r in value or []) if rel_id]
        if parsed == PropertyKind.FORMULA:
            return transform_formula(value)
        if parsed == PropertyKind.ROLLUP:
            return transform_rollup(value)
        if parsed in (PropertyKind.CREATED_TIME, PropertyKind.LAST_EDITED_TIME):
            return value or None
        if parsed in (PropertyKind.CREATED_BY, PropertyKind.LAST_EDITED_BY):
            return _user_id(value)
    except Exception as e:
        logger.error(f"Error transforming {kind} property: {e}")
        return None

    logger.warning(f"Unknown Notion property type: {kind}")
    return None


def transform_notion_property(prop: Optional[dict]) -> Any:
    """Transform a full property object ({"type": ..., <type>: payload})."""
    if not prop or not isinstance(prop, dict):
        return None
    kind = prop.get("type")
    return transform_property(kind, prop.get(kind) if kind else None)


def transform_record(record: Record) -> dict[str, Any]:
    """
    Build a destination row from a Notion record.

    Properties are keyed by normalized column name; None values are left out.
    Properties that normalize to the same column share it and the later one wins.
    """
    row: dict[str, Any] = {}
    for name, prop in record.properties.items():
        value = transform_notion_property(prop)
        if value is None:
            continue
        column = normalize_name(name)
        if not column:
            continue
        row[column] = value

    # Metadata goes last so a property can never overwrite it
    row["notion_id"] = record.id
    row["created_at"] = record.created_time
    row["last_edited_time"] = record.last_edited_time

    return {k: v for k, v in row.items() if v is not None}


def validate_row(row: Any) -> bool:
    """A row is only usable with a non-empty notion_id."""
    if not isinstance(row, dict):
        logger.error(f"Invalid row structure: {type(row).__name__}")
        return False
    if not row.get("notion_id"):
        logger.error("Row is missing required notion_id")
        return False
    return True
