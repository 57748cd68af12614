from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal

from stores.types import FACET_FIELDS, StoreRecord

FilterType = Literal[
    "name_address", "location_type", "store_size", "parking", "expenditure"
]
FILTER_TYPES: tuple[str, ...] = (
    "name_address",
    "location_type",
    "store_size",
    "parking",
    "expenditure",
)

# Search filter type -> record attribute it matches against.
_QUERY_FIELDS: dict[str, str] = {
    "location_type": "location_type",
    "store_size": "store_size",
    "parking": "parking",
    "expenditure": "expenditure_band",
}

StorePredicate = Callable[[StoreRecord], bool]


@dataclass(frozen=True)
class StoreFilter:
    """
    Search box + multi-select facets.

    `facets` maps a facet field (see `FACET_FIELDS`) to the accepted values; an
    empty selection means "any".
    """

    query: str = ""
    filter_type: FilterType = "name_address"
    facets: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def normalized_query(self) -> str:
        return (self.query or "").strip().lower()

    def active_filter_count(self) -> int:
        return sum(len(v) for k, v in self.facets.items() if k in FACET_FIELDS)

    def is_empty(self) -> bool:
        return not self.normalized_query() and self.active_filter_count() == 0


def build_predicate(flt: StoreFilter) -> StorePredicate:
    q = flt.normalized_query()
    search: StorePredicate | None = None
    if q:
        if flt.filter_type == "name_address":
            pattern = re.compile(r"\b" + re.escape(q), re.IGNORECASE)

            def _by_name_address(r: StoreRecord) -> bool:
                return bool(pattern.search(r.name) or pattern.search(r.address))

            search = _by_name_address
        else:
            attr = _QUERY_FIELDS.get(flt.filter_type)
            if attr is None:
                raise ValueError(f"Unknown filter type: {flt.filter_type}")

            def _by_facet(r: StoreRecord) -> bool:
                return q in str(getattr(r, attr) or "").lower()

            search = _by_facet

    selections = {
        name: frozenset(values)
        for name, values in flt.facets.items()
        if name in FACET_FIELDS and values
    }

    def predicate(r: StoreRecord) -> bool:
        if search is not None and not search(r):
            return False
        for name, allowed in selections.items():
            if r.facet(name) not in allowed:
                return False
        return True

    return predicate


def filter_options(records: Iterable[StoreRecord]) -> dict[str, list[str]]:
    values: dict[str, set[str]] = {name: set() for name in FACET_FIELDS}
    for r in records:
        for name in FACET_FIELDS:
            v = r.facet(name)
            if v:
                values[name].add(v)
    return {
        name: sorted(found, key=lambda s: (s.casefold(), s))
        for name, found in values.items()
    }
