"""
Document Field Values

Tagged representation of document-store values handed to the sync core.
The store adapter converts raw SDK values into one of four variants so that
the mapper never has to inspect opaque objects for timestamp behaviour:

- Scalar: str, int, float, bool, None
- Timestamp: timezone-aware UTC datetime
- Nested: mapping of field name -> FieldValue
- Array: ordered list of FieldValue
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Union


@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class Timestamp:
    value: datetime

    @classmethod
    def from_seconds(cls, seconds: Union[int, float], nanoseconds: int = 0) -> "Timestamp":
        moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
        return cls(moment.replace(microsecond=nanoseconds // 1000) if nanoseconds else moment)

    def isoformat(self) -> str:
        return self.value.isoformat()


@dataclass(frozen=True)
class Nested:
    fields: Dict[str, "FieldValue"] = field(default_factory=dict)


@dataclass(frozen=True)
class Array:
    items: List["FieldValue"] = field(default_factory=list)


FieldValue = Union[Scalar, Timestamp, Nested, Array]

# Serialized timestamp shapes seen in exported / REST-encoded documents
_TIMESTAMP_KEY_SETS = (
    frozenset({"seconds", "nanoseconds"}),
    frozenset({"_seconds", "_nanoseconds"}),
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_field_value(raw: Any) -> FieldValue:
    """
    Convert a plain Python value into its tagged FieldValue.

    Args:
        raw: Value as decoded by the document-store SDK (datetimes, dicts,
            lists, scalars)

    Returns:
        FieldValue variant
    """
    if isinstance(raw, (Scalar, Timestamp, Nested, Array)):
        return raw

    if isinstance(raw, datetime):
        return Timestamp(_as_utc(raw))

    if isinstance(raw, dict):
        keys = frozenset(raw.keys())
        if keys in _TIMESTAMP_KEY_SETS:
            seconds = raw.get("seconds", raw.get("_seconds"))
            nanos = raw.get("nanoseconds", raw.get("_nanoseconds")) or 0
            if isinstance(seconds, (int, float)) and isinstance(nanos, int):
                return Timestamp.from_seconds(seconds, nanos)
        return Nested({str(k): to_field_value(v) for k, v in raw.items()})

    if isinstance(raw, (list, tuple)):
        return Array([to_field_value(item) for item in raw])

    return Scalar(raw)


def to_plain(value: FieldValue) -> Any:
    """
    Unwrap a FieldValue back into plain Python values.

    Timestamps stay as datetimes; use the mapper for ISO-8601 encoding.
    """
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, Timestamp):
        return value.value
    if isinstance(value, Nested):
        return {k: to_plain(v) for k, v in value.fields.items()}
    if isinstance(value, Array):
        return [to_plain(item) for item in value.items]
    return value


class ChangeType(str, Enum):
    """Document change kinds delivered by a collection watch."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class SourceDocument:
    """One document read from the document store."""

    id: str
    fields: Dict[str, FieldValue] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, doc_id: str, data: Dict[str, Any]) -> "SourceDocument":
        return cls(id=doc_id, fields={k: to_field_value(v) for k, v in (data or {}).items()})

    def get(self, name: str) -> Any:
        """Plain value of a top-level field, or None when absent."""
        value = self.fields.get(name)
        return to_plain(value) if value is not None else None


@dataclass
class ChangeEvent:
    """A single insert/update/delete observed on a watched collection."""

    change_type: ChangeType
    document: SourceDocument

    @property
    def document_id(self) -> str:
        return self.document.id
