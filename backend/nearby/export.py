from __future__ import annotations

import asyncio
import csv
import io
import logging
import time
from dataclasses import dataclass
from typing import Any, Sequence

from nearby.client import NearbyClient, NearbyLookupError
from selection.cancel import CancellationToken
from stores.types import StoreRecord

log = logging.getLogger(__name__)

POI_CATEGORIES: tuple[str, ...] = (
    "Amusement and Recreation",
    "Auto and Gasoline Service Stations",
    "Automotive Dealers",
    "Children's Activities",
    "Civic and Social Organizations",
    "Eating Places",
    "Education",
    "Entertainment",
    "Fashion and Apparel",
    "Grocery Stores",
    "Healthcare",
    "Hotels",
    "Industrial and Commercial Zones",
    "Retail",
    "Salon/Spa",
    "Services",
    "Sports and Fitness Centers",
    "Transportation",
)

BASE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("id", "Store ID"),
    ("name", "Store Name"),
    ("address", "Address"),
    ("location_type", "Location Type"),
    ("store_size", "Store Size"),
    ("parking", "Parking"),
    ("expenditure_band", "Expenditure Band"),
    ("T_TL", "Population Total"),
    ("M_TL", "Male Population"),
    ("F_TL", "Female Population"),
)


@dataclass(frozen=True)
class ExportTable:
    # (key, label) pairs in column order.
    headers: tuple[tuple[str, str], ...]
    rows: tuple[dict[str, Any], ...]
    filename: str

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow([label for _key, label in self.headers])
        for row in self.rows:
            writer.writerow([row.get(key, "") for key, _label in self.headers])
        return buf.getvalue()


def export_filename() -> str:
    return f"filtered-stores-{int(time.time() * 1000)}.csv"


class ExportBuilder:
    """
    Builds the filtered-stores export with nearby POI counts per category.

    POI counts are fetched once per store id and kept for the session; the rows
    of the last table are reused while the exported id set is unchanged.
    """

    def __init__(
        self,
        client: NearbyClient,
        *,
        radius_m: float = 250.0,
        categories: Sequence[str] = POI_CATEGORIES,
        concurrency: int = 8,
    ) -> None:
        self._client = client
        self.radius_m = float(radius_m)
        self.categories = tuple(categories)
        self.concurrency = max(1, int(concurrency))
        self._poi_counts: dict[str, dict[str, int]] = {}
        self._last: tuple[str, tuple[dict[str, Any], ...]] | None = None

    @property
    def cached_store_ids(self) -> set[str]:
        return set(self._poi_counts)

    def headers(self) -> tuple[tuple[str, str], ...]:
        return BASE_COLUMNS + tuple(
            (f"poi_{category}", f"POI {category}") for category in self.categories
        )

    async def build(self, records: Sequence[StoreRecord]) -> ExportTable:
        export_key = "|".join(sorted(r.id for r in records))
        if self._last is not None and self._last[0] == export_key:
            return self._table(self._last[1])

        missing = sorted({r.id for r in records} - set(self._poi_counts))
        failed: list[str] = []
        if missing:
            sem = asyncio.Semaphore(self.concurrency)
            token = CancellationToken()

            async def fetch(store_id: str) -> None:
                async with sem:
                    counts = await self._fetch_counts(store_id, token)
                if counts is None:
                    failed.append(store_id)
                else:
                    self._poi_counts[store_id] = counts

            await asyncio.gather(*(fetch(sid) for sid in missing))

        rows = tuple(self._row(r, self._poi_counts.get(r.id, {})) for r in records)
        if failed:
            # Failed stores export zero counts and are retried on the next export.
            log.warning(
                "POI counts unavailable for %d of %d stores", len(failed), len(records)
            )
            self._last = None
        else:
            self._last = (export_key, rows)
        return self._table(rows)

    def _table(self, rows: tuple[dict[str, Any], ...]) -> ExportTable:
        # Every export gets its own timestamp, cached rows or not.
        return ExportTable(
            headers=self.headers(),
            rows=rows,
            filename=export_filename(),
        )

    async def _fetch_counts(
        self, store_id: str, token: CancellationToken
    ) -> dict[str, int] | None:
        try:
            resp = await self._client.nearby_places(
                store_id, radius_m=self.radius_m, token=token
            )
        except NearbyLookupError as e:
            log.debug("POI counts unavailable for %s: %s", store_id, e)
            return None
        return dict(resp.counts)

    def _row(self, r: StoreRecord, counts: dict[str, int]) -> dict[str, Any]:
        d = r.demographics
        row: dict[str, Any] = {
            "id": r.id,
            "name": r.name,
            "address": r.address,
            "location_type": r.location_type,
            "store_size": r.store_size,
            "parking": r.parking,
            "expenditure_band": r.expenditure_band,
            "T_TL": _plain_number(d.total),
            "M_TL": _plain_number(d.male),
            "F_TL": _plain_number(d.female),
        }
        for category in self.categories:
            row[f"poi_{category}"] = int(counts.get(category, 0))
        return row


def _plain_number(v: float) -> int | float:
    return int(v) if float(v).is_integer() else v
