"""Typed Values - closed variant for rule operands and request data

Request data arrives as loosely-typed JSON. Before comparing, both sides of
a rule are wrapped in a TypedValue so coercion happens in one place:
number first, then datetime, then case-insensitive text.
"""
import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from ..utils.time import ensure_utc, format_iso, parse_iso


class ValueKind(str, Enum):
    NULL = "NULL"
    BOOL = "BOOL"
    NUMBER = "NUMBER"
    DATETIME = "DATETIME"
    STRING = "STRING"
    LIST = "LIST"


class TypedValue:
    """A request-data or rule value tagged with its kind"""

    __slots__ = ("kind", "raw")

    def __init__(self, kind: ValueKind, raw: Any):
        self.kind = kind
        self.raw = raw

    @classmethod
    def of(cls, raw: Any) -> "TypedValue":
        if isinstance(raw, TypedValue):
            return raw
        if raw is None:
            return cls(ValueKind.NULL, None)
        if isinstance(raw, bool):
            return cls(ValueKind.BOOL, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, datetime):
            return cls(ValueKind.DATETIME, ensure_utc(raw))
        if isinstance(raw, date):
            return cls(ValueKind.DATETIME, datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc))
        if isinstance(raw, (list, tuple, set)):
            return cls(ValueKind.LIST, list(raw))
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        return cls(ValueKind.STRING, str(raw))

    def __repr__(self) -> str:
        return f"TypedValue({self.kind.value}, {self.raw!r})"

    # ------------------------------------------------------------------
    # Coercions - each returns None when the value cannot be coerced
    # ------------------------------------------------------------------

    def as_decimal(self) -> Optional[Decimal]:
        if self.kind == ValueKind.NUMBER:
            if isinstance(self.raw, float) and not math.isfinite(self.raw):
                return None
            return Decimal(str(self.raw))
        if self.kind == ValueKind.STRING:
            text = self.raw.strip()
            if not text:
                return None
            try:
                number = Decimal(text)
            except InvalidOperation:
                return None
            return number if number.is_finite() else None
        return None

    def as_datetime(self) -> Optional[datetime]:
        if self.kind == ValueKind.DATETIME:
            return self.raw
        if self.kind == ValueKind.STRING:
            text = self.raw.strip()
            # Require a full date so short numeric strings are not read as years
            if len(text) < 10:
                return None
            try:
                return parse_iso(text)
            except (ValueError, OverflowError):
                return None
        return None

    def as_text(self) -> str:
        if self.kind == ValueKind.NULL:
            return ""
        if self.kind == ValueKind.BOOL:
            return "true" if self.raw else "false"
        if self.kind == ValueKind.DATETIME:
            return format_iso(self.raw)
        if self.kind == ValueKind.NUMBER:
            number = self.as_decimal()
            return str(number.normalize()) if number is not None else str(self.raw)
        if self.kind == ValueKind.LIST:
            return json.dumps(self.raw, default=str)
        return str(self.raw)

    def as_list(self) -> Optional[List["TypedValue"]]:
        """List items, also accepting a JSON-encoded list string"""
        if self.kind == ValueKind.LIST:
            return [TypedValue.of(item) for item in self.raw]
        if self.kind == ValueKind.STRING and self.raw.strip().startswith("["):
            try:
                decoded = json.loads(self.raw)
            except ValueError:
                return None
            if isinstance(decoded, list):
                return [TypedValue.of(item) for item in decoded]
        return None


def compare_values(left: TypedValue, right: TypedValue) -> Optional[int]:
    """
    Three-way compare two scalar values.

    Returns -1, 0 or 1, or None when the pair is not comparable
    (lists, or a null against a non-null).
    """
    if left.kind == ValueKind.LIST or right.kind == ValueKind.LIST:
        return None
    if left.kind == ValueKind.NULL or right.kind == ValueKind.NULL:
        return 0 if left.kind == right.kind else None

    left_num, right_num = left.as_decimal(), right.as_decimal()
    if left_num is not None and right_num is not None:
        return _sign(left_num, right_num)

    left_dt, right_dt = left.as_datetime(), right.as_datetime()
    if left_dt is not None and right_dt is not None:
        return _sign(left_dt, right_dt)

    return _sign(left.as_text().casefold(), right.as_text().casefold())


def values_equal(left: TypedValue, right: TypedValue) -> bool:
    return compare_values(left, right) == 0


def _sign(a: Any, b: Any) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0
