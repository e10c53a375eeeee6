"""
Attribute data types and raw-value parsing.

Attribute values travel as raw text. This module is the single place where
that text is turned into a typed Python value, keyed on the declared
``AttributeDataType``:

    STRING  -> str
    NUMBER  -> Decimal
    BOOLEAN -> bool
    DATE    -> datetime (timezone-aware; naive input is taken as UTC)
    ENUM    -> str (item code; membership is a schema concern)
    JSON    -> parsed JSON document

Pure functions, no I/O.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

# Invariant (culture-neutral) floating-point literal.
_NUMBER_LITERAL = re.compile(
    r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?"
)

_BOOLEAN_LITERALS = {"true": True, "false": False}


class AttributeDataType(Enum):
    """Closed set of attribute data types.

    The member value is the stable persistence code.
    """

    STRING = 1
    NUMBER = 2
    BOOLEAN = 3
    DATE = 4
    ENUM = 5
    JSON = 6

    @property
    def code(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.title()

    def __str__(self) -> str:
        return self.label

    @classmethod
    def from_code(cls, code: int) -> AttributeDataType:
        """Resolve a member from its persistence code."""
        for member in cls:
            if member.value == code:
                return member
        raise ValueError(f"Unknown attribute data type code: {code!r}")

    @classmethod
    def from_name(cls, name: str) -> AttributeDataType:
        """Resolve a member from its name, case-insensitively."""
        if isinstance(name, str):
            member = cls.__members__.get(name.strip().upper())
            if member is not None:
                return member
        raise ValueError(f"Unknown attribute data type: {name!r}")


def parse_number(raw: str) -> Decimal | None:
    """Parse an invariant float literal to Decimal; None if not a number."""
    text = raw.strip()
    if not _NUMBER_LITERAL.fullmatch(text):
        return None
    return Decimal(text)


def parse_boolean(raw: str) -> bool | None:
    """Parse "true"/"false" (any case); None otherwise."""
    return _BOOLEAN_LITERALS.get(raw.strip().lower())


def parse_datetime(raw: str) -> datetime | None:
    """Parse an ISO 8601 date or date/time with optional offset."""
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_typed_value(raw: str | None, data_type: AttributeDataType) -> Any:
    """
    Parse a raw attribute value according to its declared data type.

    Blank input yields None for every type.

    Raises:
        ValueError: if the raw text is malformed for ``data_type``.
    """
    if raw is None or not raw.strip():
        return None

    if data_type == AttributeDataType.NUMBER:
        number = parse_number(raw)
        if number is None:
            raise ValueError(f"Not a number: {raw!r}")
        return number

    if data_type == AttributeDataType.BOOLEAN:
        flag = parse_boolean(raw)
        if flag is None:
            raise ValueError(f"Not a boolean: {raw!r}")
        return flag

    if data_type == AttributeDataType.DATE:
        moment = parse_datetime(raw)
        if moment is None:
            raise ValueError(f"Not a date: {raw!r}")
        return moment

    if data_type == AttributeDataType.JSON:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Not valid JSON: {e.msg}") from e

    if data_type == AttributeDataType.ENUM:
        return raw.strip()

    return raw
