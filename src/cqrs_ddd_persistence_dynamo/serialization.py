"""JSON documents <-> opaque payload bytes."""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from .exceptions import SerializationError


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_document(document: dict[str, Any]) -> bytes:
    """Encode a JSON document to UTF-8 bytes."""
    try:
        return json.dumps(
            document, default=_json_serializer, separators=(",", ":")
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(str(e)) from e


def decode_document(raw: bytes) -> dict[str, Any]:
    """Decode UTF-8 JSON bytes; the top level must be an object."""
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(str(e)) from e
    if not isinstance(data, dict):
        raise SerializationError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    return data
