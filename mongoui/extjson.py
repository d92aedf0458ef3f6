"""Extended JSON conversion between request/response payloads and bson types.

Plain JSON cannot carry ObjectIds, dates, 64-bit integers, decimals or binary
blobs, so payloads wrap them in single-key sentinel objects::

    {"$oid": "65f0c2..."}
    {"$date": "2024-03-01T12:00:00.000Z"}
    {"$numberLong": "9007199254740993"}
    {"$numberDecimal": "12.50"}
    {"$binary": {"base64": "AAEC", "subType": "00"}}

:func:`decode` turns those wrappers into driver types before a value is handed
to pymongo; :func:`encode` does the reverse for documents read back from the
server. Wrappers that do not hold a valid value (for example an ``$oid`` that
is not 24 hex characters) are left untouched by :func:`decode`.

A decode/encode pass yields the canonical form rather than the input text.
ObjectIds come back as lowercase hex. Dates come back in UTC with millisecond
precision and a ``Z`` suffix, so ``2024-03-01T12:00:00Z`` becomes
``2024-03-01T12:00:00.000Z``.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from bson import ObjectId, json_util
from bson.binary import Binary, UuidRepresentation
from bson.decimal128 import Decimal128
from bson.int64 import Int64
from bson.json_util import JSONOptions, JSONMode

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FALLBACK_OPTIONS = JSONOptions(
    json_mode=JSONMode.RELAXED,
    uuid_representation=UuidRepresentation.STANDARD,
)


def decode(value: Any) -> Any:
    """Convert extended JSON wrappers inside ``value`` into bson types."""

    if isinstance(value, Mapping):
        if len(value) == 1 or (len(value) == 2 and "$binary" in value and "$type" in value):
            converted = _decode_wrapper(value)
            if converted is not _UNCHANGED:
                return converted
        return {key: decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode(item) for item in value]
    return value


def encode(value: Any) -> Any:
    """Convert driver values into JSON-compatible extended JSON."""

    if isinstance(value, ObjectId):
        return {"$oid": str(value)}
    if isinstance(value, datetime):
        return {"$date": _format_date(value)}
    if isinstance(value, Int64):
        return {"$numberLong": str(int(value))}
    if isinstance(value, Decimal128):
        return {"$numberDecimal": str(value)}
    if isinstance(value, uuid.UUID):
        return _binary_wrapper(value.bytes, 4)
    if isinstance(value, Binary):
        return _binary_wrapper(bytes(value), value.subtype)
    if isinstance(value, bytes):
        return _binary_wrapper(value, 0)
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(key): encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(item) for item in value]
    # Timestamp, Regex, Code, MinKey/MaxKey, DBRef and friends.
    return encode(json_util.default(value, json_options=_FALLBACK_OPTIONS))


def dumps(value: Any, *, indent: int | None = None) -> str:
    """Serialize a driver value to an extended JSON string."""

    return json.dumps(encode(value), indent=indent)


def loads(text: str) -> Any:
    """Parse strict JSON text and decode any extended JSON wrappers."""

    return decode(json.loads(text))


def parse_object_id(value: Any) -> Any:
    """Return an ObjectId for canonical 24-hex strings, else ``value`` unchanged."""

    if isinstance(value, str) and ObjectId.is_valid(value) and str(ObjectId(value)) == value:
        return ObjectId(value)
    return value


class _Unchanged:
    pass


_UNCHANGED = _Unchanged()


def _decode_wrapper(value: Mapping[str, Any]) -> Any:
    if "$oid" in value:
        raw = value["$oid"]
        if isinstance(raw, str) and ObjectId.is_valid(raw):
            return ObjectId(raw)
        return _UNCHANGED
    if "$date" in value:
        return _parse_date(value["$date"])
    if "$numberLong" in value:
        raw = value["$numberLong"]
        try:
            return Int64(int(raw))
        except (TypeError, ValueError):
            return _UNCHANGED
    if "$numberDecimal" in value:
        raw = value["$numberDecimal"]
        if not isinstance(raw, str):
            return _UNCHANGED
        try:
            return Decimal128(raw)
        except (ArithmeticError, ValueError):
            return _UNCHANGED
    if "$binary" in value:
        return _parse_binary(value)
    return _UNCHANGED


def _parse_date(raw: Any) -> Any:
    if isinstance(raw, Mapping) and set(raw) == {"$numberLong"}:
        try:
            raw = int(raw["$numberLong"])
        except (TypeError, ValueError):
            return _UNCHANGED
    if isinstance(raw, bool):
        return _UNCHANGED
    if isinstance(raw, (int, float)):
        try:
            return _EPOCH + timedelta(milliseconds=raw)
        except (OverflowError, ValueError):
            return _UNCHANGED
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return _UNCHANGED
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _UNCHANGED


def _parse_binary(value: Mapping[str, Any]) -> Any:
    raw = value["$binary"]
    if isinstance(raw, Mapping):
        payload = raw.get("base64")
        subtype = raw.get("subType", "00")
    else:
        payload = raw
        subtype = value.get("$type", "00")
    if not isinstance(payload, str):
        return _UNCHANGED
    try:
        data = base64.b64decode(payload, validate=True)
        subtype_number = int(subtype, 16) if isinstance(subtype, str) else int(subtype)
        return Binary(data, subtype_number)
    except (binascii.Error, TypeError, ValueError):
        return _UNCHANGED


def _format_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _binary_wrapper(data: bytes, subtype: int) -> dict[str, Any]:
    return {
        "$binary": {
            "base64": base64.b64encode(data).decode("ascii"),
            "subType": f"{subtype:02x}",
        }
    }


__all__ = ["decode", "dumps", "encode", "loads", "parse_object_id"]
