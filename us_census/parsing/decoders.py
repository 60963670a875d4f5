"""
Decoders for the loosely typed fields of `variables.json` and `geography.json`.

The Census API publishes these documents without a stable schema: the same
field can be a string in one endpoint, an array or a boolean in another. Each
decoder accepts the raw JSON value (as produced by `json.loads`), maps every
accepted shape onto one canonical Python type, and raises DecodeError for
anything else.

Usage:
    from us_census.parsing.decoders import decode_limit, split_label

    split_label("Estimate!!Total:")   # ["Estimate", "Total"]
    decode_limit('"51')                # 51
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, List, Optional, Pattern

from us_census.exceptions import DecodeError

_YEAR_RE = re.compile(r"[0-9]{4}")
_ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class DelimitedSplitter:
    """
    Split a single delimited string into a list of substrings.

    One instance of `trim` is removed from each end before splitting on
    `pattern`. A string without any delimiter yields a one-element list.

    Attributes
    ----------
    pattern : str
        Regular expression matching the delimiter.
    trim : str
        Single character trimmed from both ends.
    description : str
        Human readable description used in error messages.
    """

    pattern: str
    trim: str
    description: str
    _compiled: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def __call__(self, value: Any, field_name: Optional[str] = None) -> List[str]:
        if not isinstance(value, str):
            raise DecodeError(
                f"expected {self.description} as a string, got {type(value).__name__}: {value!r}",
                value=value,
                field=field_name,
            )
        text = value
        if text.startswith(self.trim):
            text = text[len(self.trim) :]
        if text.endswith(self.trim):
            text = text[: -len(self.trim)]
        return self._compiled.split(text)


LABEL_SPLITTER = DelimitedSplitter(
    pattern=r":?!!",
    trim=":",
    description="words separated by '!!' or ':!!'",
)
COMMA_SPLITTER = DelimitedSplitter(
    pattern=r",",
    trim=" ",
    description="comma-separated words",
)


def split_label(value: Any) -> List[str]:
    """Split a variable label such as ``"Estimate!!Total:!!Male:"``."""
    return LABEL_SPLITTER(value, field_name="label")


def split_comma_separated(value: Any, field_name: Optional[str] = None) -> Optional[List[str]]:
    """Split ``"A,B,C"`` into ``["A", "B", "C"]``; ``None`` stays ``None``."""
    if value is None:
        return None
    return COMMA_SPLITTER(value, field_name=field_name)


def decode_reference_date(value: Any) -> Optional[date]:
    """
    Decode a geography ``referenceDate``.

    Accepts a bare 4-digit year (normalized to January 1 of that year) or a
    ``YYYY-MM-DD`` string.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(
            f"referenceDate must be a string, got {type(value).__name__}: {value!r}",
            value=value,
            field="referenceDate",
        )
    try:
        if _YEAR_RE.fullmatch(value):
            return date(int(value), 1, 1)
        if _ISO_DATE_RE.fullmatch(value):
            return date.fromisoformat(value)
    except ValueError as exc:
        raise DecodeError(
            f"invalid referenceDate {value!r}: {exc}", value=value, field="referenceDate"
        ) from exc
    raise DecodeError(
        f"referenceDate {value!r} is neither a year (YYYY) nor a date (YYYY-MM-DD)",
        value=value,
        field="referenceDate",
    )


def decode_wildcard(value: Any) -> Optional[List[str]]:
    """
    Decode a geography ``wildcard``.

    An array of strings is returned unchanged and ``false`` becomes an empty
    list. ``true`` has no defined meaning in the published format and is
    rejected.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        if value:
            raise DecodeError(
                "boolean value `true` is not allowed for `wildcard`",
                value=value,
                field="wildcard",
            )
        return []
    if isinstance(value, list):
        for item in value:
            if not isinstance(item, str):
                raise DecodeError(
                    f"wildcard entries must be strings, got {item!r}",
                    value=value,
                    field="wildcard",
                )
        return list(value)
    raise DecodeError(
        f"wildcard must be an array of strings or a boolean, got {value!r}",
        value=value,
        field="wildcard",
    )


def decode_limit(value: Any) -> Optional[int]:
    """
    Decode a geography ``limit``.

    Native integers pass through. Strings may carry stray literal quote
    characters (``"\\"51"``); those are stripped before parsing.
    """
    if value is None:
        return None
    # bool is a subclass of int
    if isinstance(value, bool):
        raise DecodeError(f"invalid value for 'limit' field: {value!r}", value=value, field="limit")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        cleaned = value.strip('"')
        if not _INTEGER_RE.fullmatch(cleaned):
            raise DecodeError(
                f"invalid value for 'limit' field: {value}", value=value, field="limit"
            )
        return int(cleaned)
    raise DecodeError(
        f"limit must be an integer or a string, got {type(value).__name__}: {value!r}",
        value=value,
        field="limit",
    )


__all__ = [
    "DelimitedSplitter",
    "LABEL_SPLITTER",
    "COMMA_SPLITTER",
    "split_label",
    "split_comma_separated",
    "decode_reference_date",
    "decode_wildcard",
    "decode_limit",
]
