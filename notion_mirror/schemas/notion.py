"""Types shared by the sync engine. No I/O."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


class PropertyKind(str, enum.Enum):
    """Notion property type tags, with an explicit fallback for anything else."""

    TITLE = "title"
    RICH_TEXT = "rich_text"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    STATUS = "status"
    DATE = "date"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    URL = "url"
    EMAIL = "email"
    PHONE_NUMBER = "phone_number"
    FILES = "files"
    PEOPLE = "people"
    RELATION = "relation"
    FORMULA = "formula"
    ROLLUP = "rollup"
    CREATED_TIME = "created_time"
    CREATED_BY = "created_by"
    LAST_EDITED_TIME = "last_edited_time"
    LAST_EDITED_BY = "last_edited_by"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "PropertyKind":
        """Map a raw type tag to a kind; unrecognized tags become UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DestinationType(str, enum.Enum):
    """Closed set of destination column types."""

    TEXT = "text"
    TEXT_ARRAY = "text_array"
    TIMESTAMPTZ = "timestamptz"
    BOOLEAN = "boolean"
    NUMERIC = "numeric"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Notion ISO 8601 timestamp (date-only allowed) into an aware UTC datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Serialize a datetime as ISO 8601 UTC with a trailing Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Record:
    """One Notion page as fetched within a run."""

    id: str
    created_time: Optional[str]
    last_edited_time: Optional[str]
    properties: dict[str, dict] = field(default_factory=dict)

    @classmethod
    def from_page(cls, page: dict) -> "Record":
        return cls(
            id=page.get("id") or "",
            created_time=page.get("created_time"),
            last_edited_time=page.get("last_edited_time"),
            properties=page.get("properties") or {},
        )


@dataclass(frozen=True)
class ColumnDefinition:
    """A destination column derived from one Notion property."""

    name: str
    type: DestinationType
    original_name: str
    notion_type: str


@dataclass
class ColumnSyncResult:
    """Outcome of reconciling destination columns against the Notion schema."""

    created: int = 0
    existing: int = 0
    missing: int = 0
    errors: list[dict] = field(default_factory=list)
    summary: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "existing": self.existing,
            "missing": self.missing,
            "errors": list(self.errors),
            "summary": self.summary,
        }


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    errors: list[dict] = field(default_factory=list)
