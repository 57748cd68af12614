from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from geo.index import ClusterOptions, SpatialIndex, build_spatial_index
from stores.types import StoreRecord

log = logging.getLogger(__name__)

RecordPredicate = Callable[[StoreRecord], bool]


class ClusterSetManager:
    """
    Owns the full-catalog index and the filtered-subset index.

    Both are rebuilt wholesale when their input changes. Every build takes a new
    generation number, which is part of every marker key derived from the index.
    """

    def __init__(self, *, options: ClusterOptions | None = None) -> None:
        self.options = options or ClusterOptions()
        self._generation = 0
        self._records: tuple[StoreRecord, ...] = ()
        self._predicate: RecordPredicate | None = None
        self._filtered: tuple[StoreRecord, ...] = ()
        self._base_index: SpatialIndex | None = None
        self._filtered_index: SpatialIndex | None = None

    @property
    def records(self) -> tuple[StoreRecord, ...]:
        return self._records

    @property
    def filtered_records(self) -> tuple[StoreRecord, ...]:
        return self._filtered

    @property
    def filtered_count(self) -> int:
        return len(self._filtered)

    @property
    def base_index(self) -> SpatialIndex | None:
        return self._base_index

    @property
    def filtered_index(self) -> SpatialIndex | None:
        return self._filtered_index

    def set_base(self, records: Sequence[StoreRecord]) -> None:
        self._records = tuple(records)
        self._base_index = self._build(self._records) if self._records else None
        self._refilter(force=True)

    def set_filter(self, predicate: RecordPredicate | None) -> bool:
        """
        Apply a new filter predicate (None selects every record).

        Returns True when the filtered result set changed and the filtered index
        was rebuilt or torn down.
        """
        self._predicate = predicate
        return self._refilter(force=False)

    def get_active_index(self) -> SpatialIndex | None:
        if self._filtered_index is not None:
            return self._filtered_index
        return self._base_index

    def _refilter(self, *, force: bool) -> bool:
        if self._predicate is None:
            selected = self._records
        else:
            selected = tuple(r for r in self._records if self._predicate(r))

        if not force and selected == self._filtered:
            return False

        self._filtered = selected
        if selected:
            self._filtered_index = self._build(selected)
        else:
            self._filtered_index = None
            log.debug("Filter matched no stores; filtered index torn down")
        return True

    def _build(self, records: tuple[StoreRecord, ...]) -> SpatialIndex:
        self._generation += 1
        t0 = time.perf_counter()
        index = build_spatial_index(
            ((r.id, r.lat, r.lon, r) for r in records),
            options=self.options,
            generation=self._generation,
        )
        log.debug(
            "Built spatial index gen=%d points=%d in %.1fms",
            self._generation,
            len(records),
            (time.perf_counter() - t0) * 1000.0,
        )
        return index
