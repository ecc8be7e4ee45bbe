from __future__ import annotations

import base64
import binascii
import datetime as dt
import json
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlpager.errors import CursorDecodeError
from sqlpager.types import CURSOR_OPERATORS, Cursor

log = logging.getLogger(__name__)

# Tag key for values JSON cannot carry natively
_TAG = "$t"


def _wrap_value(value: Any) -> Any:
    # bool before int: bool is an int subclass
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return {_TAG: "decimal", "v": str(value)}
    if isinstance(value, dt.datetime):
        return {_TAG: "datetime", "v": value.isoformat()}
    if isinstance(value, dt.date):
        return {_TAG: "date", "v": value.isoformat()}
    if isinstance(value, dt.time):
        return {_TAG: "time", "v": value.isoformat()}
    if isinstance(value, uuid.UUID):
        return {_TAG: "uuid", "v": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = base64.b64encode(bytes(value)).decode("ascii")
        return {_TAG: "bytes", "v": raw}
    raise TypeError(f"cursor value must be a scalar, got {type(value).__name__}")


def _unwrap_value(raw: Any) -> Any:
    if raw is None or isinstance(raw, (bool, str, int, float)):
        return raw
    if isinstance(raw, dict) and _TAG in raw and isinstance(raw.get("v"), str):
        tag, v = raw[_TAG], raw["v"]
        if tag == "decimal":
            return Decimal(v)
        if tag == "datetime":
            return dt.datetime.fromisoformat(v)
        if tag == "date":
            return dt.date.fromisoformat(v)
        if tag == "time":
            return dt.time.fromisoformat(v)
        if tag == "uuid":
            return uuid.UUID(v)
        if tag == "bytes":
            return base64.b64decode(v)
    raise CursorDecodeError("cursor value is not a scalar")


class CursorCodec:
    """
    Opaque, self-describing pagination tokens.

    A token is URL-safe base64 (padding stripped) of a compact JSON record
    ``{"f": field, "v": value, "op": operator}``. Nothing is kept server-side.
    The codec does not check that ``field`` matches the consuming query.
    """

    @staticmethod
    def encode(field: str, value: Any, operator: str = ">") -> str:
        if not field:
            raise ValueError("cursor field must be a non-empty string")
        if operator not in CURSOR_OPERATORS:
            raise ValueError(f"unsupported cursor operator: {operator!r}")
        record = {"f": field, "v": _wrap_value(value), "op": operator}
        payload = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
        token = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
        return token.rstrip("=")

    @staticmethod
    def decode(token: str) -> Cursor:
        if not token or not isinstance(token, str):
            raise CursorDecodeError("empty cursor")

        padded = token.strip() + "=" * (-len(token.strip()) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            record = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise CursorDecodeError("cursor is not valid base64 JSON") from exc

        if not isinstance(record, dict):
            raise CursorDecodeError("cursor payload must be an object")

        field = record.get("f")
        operator = record.get("op")
        if not isinstance(field, str) or not field:
            raise CursorDecodeError("cursor is missing its field")
        if "v" not in record:
            raise CursorDecodeError("cursor is missing its value")
        if operator not in CURSOR_OPERATORS:
            raise CursorDecodeError(f"cursor operator not allowed: {operator!r}")

        try:
            value = _unwrap_value(record["v"])
        except (TypeError, ValueError, InvalidOperation) as exc:
            raise CursorDecodeError("cursor value could not be restored") from exc

        return Cursor(field=field, value=value, operator=operator)

    @classmethod
    def try_decode(cls, token: str | None) -> Cursor | None:
        """Decode, logging and returning None on failure."""
        if not token:
            return None
        try:
            return cls.decode(token)
        except CursorDecodeError as exc:
            log.warning("Ignoring undecodable cursor: %s", exc)
            return None
