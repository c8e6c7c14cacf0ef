"""
Field Mapper / Schema Translator

Pure conversion between the document model (camelCase keys, timestamps,
nested objects) and the relational model (snake_case columns, ISO-8601
strings, JSONB blobs). Used by the change bridge, the backfill and the
reconciliation tool.

Rules:
- Keys resolve through the table's explicit field map, else camelCase -> snake_case
- Timestamps become ISO-8601 strings, at any nesting depth
- Nested objects and arrays keep their structure (stored as JSONB); only
  top-level keys are renamed
- Resolved names outside the table's allowed columns go to extra_data,
  shallow-merged over any catch-all the document already carried
- None, numbers and booleans pass through unchanged, except fractional numbers
  bound for integer columns, which are rounded half up
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

import structlog

from storesync.exceptions import RequiredFieldMissing
from storesync.models.field_values import (
    Array,
    FieldValue,
    Nested,
    Scalar,
    SourceDocument,
    Timestamp,
    to_field_value,
)
from storesync.models.table_mappings import (
    EXTRA_DATA_COLUMN,
    camel_to_snake,
    get_table_mapping,
    snake_to_camel,
)

logger = structlog.get_logger(__name__)

# Source keys that already hold a catch-all bucket
_SOURCE_CATCH_ALL_KEYS = ("extraData", EXTRA_DATA_COLUMN)

_TIMESTAMP_COLUMN_SUFFIXES = ("_at", "_date")
_TIMESTAMP_COLUMNS = frozenset({"date", "order_date", "last_updated", "birthday"})

__all__ = [
    "LegacyTimestamp",
    "camel_to_snake",
    "snake_to_camel",
    "encode_value",
    "map_entity_to_row",
    "map_row_to_entity",
    "validate_required_columns",
]


def encode_value(value: FieldValue) -> Any:
    """
    Encode a tagged document value for the relational store.

    Args:
        value: FieldValue (or plain value, which is tagged first)

    Returns:
        JSON-compatible value: scalars unchanged, timestamps as ISO-8601
        strings, nested objects as dicts, arrays as lists
    """
    value = to_field_value(value)

    if isinstance(value, Timestamp):
        return value.isoformat()
    if isinstance(value, Nested):
        return {key: encode_value(inner) for key, inner in value.fields.items()}
    if isinstance(value, Array):
        return [encode_value(item) for item in value.items]
    if isinstance(value, Scalar):
        return value.value
    return value


def _round_integer(value: Any) -> Any:
    if isinstance(value, float) and math.isfinite(value):
        return math.floor(value + 0.5)
    return value


def map_entity_to_row(entity_type: str, document: SourceDocument) -> Dict[str, Any]:
    """
    Convert a document into a row ready for upsert.

    Args:
        entity_type: Registered entity-type tag (destination table name)
        document: Source document with tagged field values

    Returns:
        Row dict keyed by column name. Always contains the identity column
        and an extra_data dict holding every field that has no column.
    """
    mapping = get_table_mapping(entity_type)

    row: Dict[str, Any] = {mapping.id_column: document.id}
    source_catch_all: Dict[str, Any] = {}
    extra_data: Dict[str, Any] = {}

    for key, value in document.fields.items():
        encoded = encode_value(value)

        if key in _SOURCE_CATCH_ALL_KEYS:
            if isinstance(encoded, dict):
                source_catch_all.update(encoded)
            elif encoded is not None:
                extra_data[key] = encoded
            continue

        column = mapping.resolve_column(key)

        if column == mapping.id_column:
            # Document key is the identity; keep a diverging body value rather than drop it
            if encoded != document.id:
                extra_data[column] = encoded
            continue

        if column in mapping.allowed_columns and column not in mapping.catch_all_columns:
            if mapping.is_integer_column(column):
                encoded = _round_integer(encoded)
            row[column] = encoded
        else:
            extra_data[column] = encoded

    row[EXTRA_DATA_COLUMN] = {**source_catch_all, **extra_data}
    return row


def validate_required_columns(entity_type: str, row: Dict[str, Any]) -> None:
    """
    Check NOT NULL destination columns before attempting a write.

    Raises:
        RequiredFieldMissing: if a required column is absent, None or blank
    """
    mapping = get_table_mapping(entity_type)
    record_id = str(row.get(mapping.id_column))

    for column in mapping.required_columns:
        value = row.get(column)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise RequiredFieldMissing(mapping.table, record_id, column)


class LegacyTimestamp:
    """
    Date value read back from the relational store.

    Exposes to_date() so consumers written against the document model's
    timestamp objects keep working on ISO strings.
    """

    __slots__ = ("_value",)

    def __init__(self, value: datetime):
        self._value = value

    @classmethod
    def parse(cls, raw: str) -> Optional["LegacyTimestamp"]:
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return cls(parsed)

    def to_date(self) -> datetime:
        return self._value

    def isoformat(self) -> str:
        return self._value.isoformat()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LegacyTimestamp):
            return self._value == other._value
        if isinstance(other, datetime):
            return self._value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"LegacyTimestamp({self._value.isoformat()})"

    def __str__(self) -> str:
        return self._value.isoformat()


def _is_timestamp_column(column: str) -> bool:
    return column in _TIMESTAMP_COLUMNS or column.endswith(_TIMESTAMP_COLUMN_SUFFIXES)


def _decode_column(column: str, value: Any) -> Union[Any, LegacyTimestamp]:
    if isinstance(value, str) and value and _is_timestamp_column(column):
        wrapped = LegacyTimestamp.parse(value)
        if wrapped is not None:
            return wrapped
    return value


def map_row_to_entity(entity_type: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a relational row back into the document model's shape.

    Explicit columns are renamed through the reversed field map (else
    snake_case -> camelCase); extra_data keys are spread back to the top
    level, with explicit columns winning on collision. Date strings in
    timestamp columns are wrapped in LegacyTimestamp.

    Args:
        entity_type: Registered entity-type tag
        row: Row as returned by the relational store

    Returns:
        Entity dict with an "id" key
    """
    mapping = get_table_mapping(entity_type)
    reverse = mapping.reverse_field_map()
    entity: Dict[str, Any] = {}

    catch_all = row.get(EXTRA_DATA_COLUMN)
    if isinstance(catch_all, dict):
        for column, value in catch_all.items():
            entity[reverse.get(column, snake_to_camel(column))] = _decode_column(column, value)

    for column, value in row.items():
        if column == EXTRA_DATA_COLUMN:
            continue
        if column == mapping.id_column:
            entity["id"] = value
            if column == "id":
                continue
        entity[reverse.get(column, snake_to_camel(column))] = _decode_column(column, value)

    return entity
