from __future__ import annotations

import math
from typing import Iterable

from stores.types import (
    FEMALE_AGE_COLUMNS,
    MALE_AGE_COLUMNS,
    Demographics,
    StoreRecord,
)

_QUOTE = '"'
_SEPARATOR = ","


def split_record_line(line: str) -> list[str]:
    """
    Split one physical line into fields.

    Two states: unquoted and quoted. A quote toggles the state, except a doubled
    quote inside a quoted field, which yields one literal quote. Commas separate
    fields only outside quotes. Records never span lines.
    """
    fields: list[str] = []
    current: list[str] = []
    quoted = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == _QUOTE:
            if quoted and i + 1 < n and line[i + 1] == _QUOTE:
                current.append(_QUOTE)
                i += 2
                continue
            quoted = not quoted
        elif ch == _SEPARATOR and not quoted:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def parse_stores(text: str) -> list[StoreRecord]:
    """
    Parse delimited store text into records.

    Never raises. The first non-empty line is the header; rows whose coordinates
    don't parse to finite numbers are dropped.
    """
    lines = _non_empty_lines(text or "")
    header = next(lines, None)
    if header is None:
        return []

    columns = _column_map(split_record_line(header))
    out: list[StoreRecord] = []
    for line in lines:
        record = _to_record(split_record_line(line), columns)
        if record is not None:
            out.append(record)
    return out


def _non_empty_lines(text: str) -> Iterable[str]:
    for raw in text.split("\n"):
        line = raw[:-1] if raw.endswith("\r") else raw
        if not line.strip():
            continue
        yield line


def _column_map(names: list[str]) -> dict[str, int]:
    out: dict[str, int] = {}
    for i, name in enumerate(names):
        key = name.lstrip("\ufeff").strip()
        # First occurrence wins for duplicated header names.
        out.setdefault(key, i)
    return out


class _Row:
    __slots__ = ("fields", "columns")

    def __init__(self, fields: list[str], columns: dict[str, int]) -> None:
        self.fields = fields
        self.columns = columns

    def text(self, name: str) -> str:
        i = self.columns.get(name)
        if i is None or i >= len(self.fields):
            return ""
        return self.fields[i]

    def number(self, name: str) -> float:
        v = _to_float(self.text(name))
        return v if math.isfinite(v) else 0.0

    def coordinate(self, name: str) -> float:
        return _to_float(self.text(name))


def _to_float(raw: str) -> float:
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return math.nan


def _to_record(fields: list[str], columns: dict[str, int]) -> StoreRecord | None:
    row = _Row(fields, columns)
    lat = row.coordinate("google_lat")
    lon = row.coordinate("google_lon")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None

    demographics = Demographics(
        total=row.number("T_TL"),
        male=row.number("M_TL"),
        female=row.number("F_TL"),
        male_age=tuple(row.number(c) for c in MALE_AGE_COLUMNS),
        female_age=tuple(row.number(c) for c in FEMALE_AGE_COLUMNS),
    )
    return StoreRecord(
        id=row.text("id"),
        lat=lat,
        lon=lon,
        name=row.text("name"),
        category=row.text("category"),
        address=row.text("address"),
        phone=row.text("phone"),
        rating=row.number("rating"),
        location_type=row.text("location_type"),
        parking=row.text("parking"),
        store_size=row.text("store_size"),
        expenditure_band=row.text("expenditure_band") or row.text("expenditure"),
        demographics=demographics,
    )
