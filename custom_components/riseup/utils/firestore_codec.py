"""Firestore REST typed-value encoding and decoding.

The Firestore REST API wraps every field in a single-key object naming its
type ({"stringValue": "x"}, {"integerValue": "3"}, ...). These helpers convert
between that representation and plain JSON-like Python values.

Pure Python, no Home Assistant imports.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a Firestore typed value.

    Raises:
        TypeError: The value has no Firestore representation.
    """
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": _format_timestamp(value)}
    if isinstance(value, dict):
        if not value:
            return {"mapValue": {}}
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        if not value:
            return {"arrayValue": {}}
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a Firestore value")


def encode_fields(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Encode a flat mapping into a Firestore `fields` object."""
    return {str(key): encode_value(item) for key, item in data.items()}


def decode_value(typed: dict[str, Any]) -> Any:
    """Decode a Firestore typed value into a plain Python value.

    Timestamps stay ISO 8601 strings so decoded documents remain JSON-serializable.

    Raises:
        ValueError: Unknown or malformed typed value.
    """
    if not isinstance(typed, dict) or len(typed) != 1:
        raise ValueError(f"Malformed Firestore value: {typed!r}")

    kind, raw = next(iter(typed.items()))
    if kind == "nullValue":
        return None
    if kind == "booleanValue":
        return bool(raw)
    if kind == "integerValue":
        return int(raw)
    if kind == "doubleValue":
        return float(raw)
    if kind in ("stringValue", "timestampValue", "referenceValue", "bytesValue"):
        return raw
    if kind == "geoPointValue":
        return {
            "latitude": raw.get("latitude", 0.0),
            "longitude": raw.get("longitude", 0.0),
        }
    if kind == "mapValue":
        return decode_fields(raw.get("fields", {}))
    if kind == "arrayValue":
        return [decode_value(item) for item in raw.get("values", [])]
    raise ValueError(f"Unknown Firestore value type: {kind}")


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Decode a Firestore `fields` object into a plain dict."""
    return {key: decode_value(item) for key, item in fields.items()}


def decode_document(document: dict[str, Any], include_id: bool = False) -> dict[str, Any]:
    """Decode a Firestore Document resource.

    With include_id, the document id (last segment of `name`) is added under
    "id" unless the document stores its own "id" field.
    """
    decoded = decode_fields(document.get("fields", {}))
    name = document.get("name")
    if include_id and name and "id" not in decoded:
        decoded["id"] = document_id_from_name(name)
    return decoded


def document_id_from_name(name: str) -> str:
    """Return the document id from a full resource name."""
    return name.rsplit("/", 1)[-1]


def _format_timestamp(value: datetime) -> str:
    """Format a datetime as an RFC 3339 UTC timestamp with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
