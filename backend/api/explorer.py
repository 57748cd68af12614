from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Sequence

from clusters.manager import ClusterSetManager
from nearby.client import HttpNearbyClient, NearbyClient, SimilarStore
from nearby.export import ExportBuilder, ExportTable
from render.surface import RecordingSurface
from render.types import FlyTo, MarkerKey, RenderDiff, Viewport
from render.viewport import ViewportRenderer
from selection.controller import FocusResult, SelectionController
from settings.types import ExplorerSettings
from stores.demographics import summarize
from stores.filters import StoreFilter, build_predicate, filter_options
from stores.loaders import load_stores
from stores.types import StoreRecord
from telemetry.singleton import get_store

log = logging.getLogger(__name__)


class StoreNotFoundError(KeyError):
    """No store with this id in the loaded catalog."""


def record_payload(r: StoreRecord) -> dict[str, Any]:
    return {
        "id": r.id,
        "lat": r.lat,
        "lon": r.lon,
        "name": r.name,
        "category": r.category,
        "address": r.address,
        "phone": r.phone,
        "rating": r.rating,
        "locationType": r.location_type,
        "parking": r.parking,
        "storeSize": r.store_size,
        "expenditureBand": r.expenditure_band,
        "demographics": summarize(r),
    }


class ExplorerSession:
    """
    One explorer session: catalog, filters, rendered markers and the focused store.

    Wires the cluster manager, renderer, selection controller and exporter
    together the way the browser drives them.
    """

    def __init__(
        self, settings: ExplorerSettings, *, client: NearbyClient | None = None
    ) -> None:
        self.settings = settings
        self.clusters = ClusterSetManager(options=settings.clustering.options())
        self.surface = RecordingSurface()
        self.renderer = ViewportRenderer(
            self.clusters,
            self.surface,
            expand_threshold=settings.clustering.expandThreshold,
            focus_zoom=settings.focus.zoom,
            focus_fly_ms=settings.focus.flyDurationMs,
            expansion_fly_ms=settings.focus.expansionFlyDurationMs,
        )
        self.client = client or HttpNearbyClient(
            settings.nearby.baseUrl,
            stores_path=settings.nearby.storesPath,
            places_path=settings.nearby.placesPath,
            timeout_s=settings.nearby.timeoutS,
        )
        self.selection = SelectionController(
            self.renderer,
            self.client,
            similar_radius_m=settings.nearby.similarRadiusM,
            places_radius_m=settings.nearby.placesRadiusM,
        )
        self.exporter = ExportBuilder(
            self.client,
            radius_m=settings.export.placesRadiusM,
            categories=settings.export.poiCategories,
            concurrency=settings.export.concurrency,
        )
        self.filter = StoreFilter()
        self._by_id: dict[str, StoreRecord] = {}

    def load(self, path: Path) -> RenderDiff:
        return self.load_records(load_stores(path))

    def load_records(self, records: Sequence[StoreRecord]) -> RenderDiff:
        t0 = time.perf_counter()
        self._by_id = {}
        for r in records:
            # Duplicate ids: the first row is the one looked up by id.
            self._by_id.setdefault(r.id, r)
        # The current filter predicate is re-applied to the new catalog.
        self.clusters.set_base(records)
        diff = self.renderer.on_index_change()
        log.info(
            "Session catalog: %d stores (%d unique ids)", len(records), len(self._by_id)
        )
        self._record("load", diff, t0, stores=len(records))
        return diff

    def find(self, store_id: str) -> StoreRecord:
        r = self._by_id.get(store_id)
        if r is None:
            raise StoreNotFoundError(store_id)
        return r

    def filter_options(self) -> dict[str, list[str]]:
        return filter_options(self.clusters.records)

    def apply_filter(self, flt: StoreFilter) -> tuple[bool, RenderDiff]:
        t0 = time.perf_counter()
        predicate = None if flt.is_empty() else build_predicate(flt)
        self.filter = flt
        changed = self.clusters.set_filter(predicate)
        diff = self.renderer.on_index_change() if changed else RenderDiff()
        self._record(
            "filter",
            diff,
            t0,
            changed=changed,
            filteredCount=self.clusters.filtered_count,
            activeFilters=flt.active_filter_count(),
        )
        return changed, diff

    def move(self, viewport: Viewport) -> RenderDiff:
        t0 = time.perf_counter()
        diff = self.renderer.on_viewport_change(viewport)
        self._record("render", diff, t0)
        return diff

    def expand_cluster(self, token: str) -> FlyTo:
        return self.renderer.expansion_fly_to(MarkerKey.parse(token))

    async def focus(
        self,
        store_id: str | None = None,
        *,
        similar: SimilarStore | None = None,
    ) -> FocusResult:
        """
        Focus a catalog store, a store from the similar-stores list, or nothing.
        """
        t0 = time.perf_counter()
        record: StoreRecord | None
        if similar is not None:
            record = self._by_id.get(similar.id) or StoreRecord.placeholder(
                id=similar.id,
                name=similar.name,
                address=similar.address,
                lat=similar.lat,
                lon=similar.lon,
            )
        elif store_id is not None:
            record = self.find(store_id)
        else:
            record = None
        result = await self.selection.set_focus(record)
        self._record(
            "focus" if record is not None else "defocus",
            result.diff,
            t0,
            storeId=None if record is None else record.id,
            superseded=result.superseded,
            nearbyError=self.selection.nearby.error,
        )
        return result

    async def export(self) -> ExportTable:
        t0 = time.perf_counter()
        table = await self.exporter.build(self.clusters.filtered_records)
        self._record("export", RenderDiff(), t0, rows=len(table.rows))
        return table

    async def aclose(self) -> None:
        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()

    def _record(
        self, event: str, diff: RenderDiff, t0: float, **extra: Any
    ) -> None:
        store = get_store()
        if store is None:
            return
        viewport = self.renderer.viewport
        index = self.clusters.get_active_index()
        stats: dict[str, Any] = {
            "markers": {
                "created": len(diff.created),
                "destroyed": len(diff.destroyed),
                "live": len(self.surface.live),
            },
            "timingsMs": {"total": round((time.perf_counter() - t0) * 1000.0, 2)},
            **extra,
        }
        store.record(
            event=event,
            generation=None if index is None else index.generation,
            view_zoom=None if viewport is None else viewport.zoom,
            bbox=None
            if viewport is None or viewport.bbox is None
            else viewport.bbox.as_dict(),
            stats=stats,
        )
