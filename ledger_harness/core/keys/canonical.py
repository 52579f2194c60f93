"""Canonical transaction body bytes.

Every signer must hash the same bytes, so a body is rendered with sorted
keys, no whitespace and a fixed encoding for each value type:

- integers and Decimals become strings (64-bit tinybar amounts survive any
  JSON reader); floats are refused
- keys become their raw hex, a threshold key becomes
  ``{"keys": [...], "threshold": n}``
- raw bytes become hex, enums their value, pydantic models their dump
- datetimes become UTC ``...Z`` strings
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel

from ledger_harness.core.keys.crypto import KeyList, PublicKey
from ledger_harness.utils.exceptions import BadRequestException


def _decimal_text(value: Decimal) -> str:
    if not value.is_finite():
        raise BadRequestException(
            "Non-finite Decimal is not allowed in a transaction body",
            details={"value": str(value)},
        )
    text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return _encode(value.value)
    # bool before int: True is an int.
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        raise BadRequestException(
            "Float is not allowed in a transaction body",
            details={"value": repr(value)},
        )
    if isinstance(value, Decimal):
        return _decimal_text(value)
    if isinstance(value, PublicKey):
        return value.to_string_raw()
    if isinstance(value, KeyList):
        return {"keys": [_encode(k) for k in value.keys], "threshold": _encode(value.threshold)}
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, BaseModel):
        return _encode(value.model_dump())
    if isinstance(value, datetime):
        at = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
        return at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, Mapping):
        return {str(k): _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    raise BadRequestException(
        f"Cannot encode {type(value).__name__} in a transaction body",
        details={"type": type(value).__name__},
    )


def canonical_json(payload: Mapping[str, Any]) -> bytes:
    """Deterministic UTF-8 body bytes for signing."""
    return json.dumps(
        _encode(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
