from __future__ import annotations

import logging
from typing import Literal

from clusters.manager import ClusterSetManager
from geo.aoi import BBox
from geo.index import ClusterNode, SpatialIndex
from render.surface import MarkerHandle, MarkerSurface
from render.types import (
    FlyTo,
    MarkerKey,
    MarkerNotFoundError,
    MarkerSpec,
    RenderDiff,
    Viewport,
)
from stores.types import StoreRecord

log = logging.getLogger(__name__)

RendererState = Literal["clustered", "focused"]

DEFAULT_EXPAND_THRESHOLD = 8


class ViewportRenderer:
    """
    Decides which markers exist for the current viewport and keeps the surface in
    sync with that decision.

    Clustered: aggregates above `expand_threshold` points render as one marker;
    smaller clusters are opened up into their individual stores.
    Focused: exactly one marker, for the focused store; clustered passes are
    suspended until defocus.
    """

    def __init__(
        self,
        clusters: ClusterSetManager,
        surface: MarkerSurface,
        *,
        expand_threshold: int = DEFAULT_EXPAND_THRESHOLD,
        focus_zoom: float = 16.0,
        focus_fly_ms: int = 1000,
        expansion_fly_ms: int = 500,
    ) -> None:
        self._clusters = clusters
        self._surface = surface
        self.expand_threshold = int(expand_threshold)
        self.focus_zoom = float(focus_zoom)
        self.focus_fly_ms = int(focus_fly_ms)
        self.expansion_fly_ms = int(expansion_fly_ms)

        self._state: RendererState = "clustered"
        self._viewport: Viewport | None = None
        self._handles: dict[MarkerKey, MarkerHandle] = {}

    @property
    def state(self) -> RendererState:
        return self._state

    @property
    def viewport(self) -> Viewport | None:
        return self._viewport

    @property
    def rendered(self) -> dict[MarkerKey, MarkerSpec]:
        return {k: h.spec for k, h in self._handles.items()}

    def on_viewport_change(self, viewport: Viewport) -> RenderDiff:
        self._viewport = viewport
        if self._state == "focused":
            return RenderDiff()
        return self.render()

    def on_index_change(self) -> RenderDiff:
        if self._state == "focused":
            return RenderDiff()
        return self.render()

    def render(self) -> RenderDiff:
        """
        One clustered pass. A no-op until the map has reported its bounds.
        """
        if self._state == "focused":
            return RenderDiff()
        target = self.compute_markers()
        if target is None:
            return RenderDiff()
        return self._reconcile(target)

    def compute_markers(self) -> dict[MarkerKey, MarkerSpec] | None:
        """
        Target marker set for the current viewport and active index.

        None means "not ready" (no bounds or no data yet); an empty dict is an
        explicit empty render.
        """
        viewport = self._viewport
        index = self._clusters.get_active_index()
        if viewport is None or viewport.bbox is None or index is None:
            return None
        if self._clusters.filtered_count == 0:
            return {}
        return self._markers_for(index, viewport.bbox, viewport.zoom)

    def focus(self, record: StoreRecord) -> tuple[RenderDiff, FlyTo]:
        self._state = "focused"
        key = MarkerKey(kind="focus", store_id=record.id)
        spec = MarkerSpec(
            key=key,
            lon=record.lon,
            lat=record.lat,
            store_id=record.id,
            label=record.name,
        )
        diff = self._reconcile({key: spec})
        fly = FlyTo(
            lon=record.lon,
            lat=record.lat,
            zoom=self.focus_zoom,
            duration_ms=self.focus_fly_ms,
        )
        return diff, fly

    def defocus(self) -> RenderDiff:
        self._state = "clustered"
        target = self.compute_markers()
        # The focused marker must go even if no clustered pass is possible yet.
        return self._reconcile(target or {})

    def expansion_fly_to(self, key: MarkerKey) -> FlyTo:
        """
        Where to fly when an aggregate marker is activated.
        """
        handle = self._handles.get(key)
        index = self._clusters.get_active_index()
        if (
            handle is None
            or key.kind != "cluster"
            or index is None
            or index.generation != key.generation
            or handle.spec.cluster_id is None
        ):
            raise MarkerNotFoundError(key.token())
        zoom = index.get_expansion_zoom(handle.spec.cluster_id)
        return FlyTo(
            lon=handle.spec.lon,
            lat=handle.spec.lat,
            zoom=float(zoom),
            duration_ms=self.expansion_fly_ms,
        )

    def _markers_for(
        self, index: SpatialIndex, bbox: BBox, zoom: float
    ) -> dict[MarkerKey, MarkerSpec]:
        gen = index.generation
        out: dict[MarkerKey, MarkerSpec] = {}

        for node in index.get_clusters(bbox, zoom):
            root = (node.id,)
            if not node.is_cluster:
                self._add_store(out, gen, root, node)
            elif node.point_count > self.expand_threshold:
                key = MarkerKey(kind="cluster", generation=gen, path=root)
                out[key] = MarkerSpec(
                    key=key,
                    lon=node.lon,
                    lat=node.lat,
                    count=node.point_count,
                    cluster_id=node.id,
                    label=str(node.point_count),
                )
            else:
                # Open small clusters all the way down to their stores.
                stack: list[tuple[ClusterNode, tuple[int, ...]]] = [(node, root)]
                while stack:
                    current, path = stack.pop()
                    nested: list[tuple[ClusterNode, tuple[int, ...]]] = []
                    for child in index.get_children(current.id):
                        child_path = path + (child.id,)
                        if child.is_cluster:
                            nested.append((child, child_path))
                        else:
                            self._add_store(out, gen, child_path, child)
                    stack.extend(reversed(nested))
        return out

    @staticmethod
    def _add_store(
        out: dict[MarkerKey, MarkerSpec],
        generation: int,
        path: tuple[int, ...],
        leaf: ClusterNode,
    ) -> None:
        record = leaf.payload
        key = MarkerKey(kind="store", generation=generation, path=path)
        out[key] = MarkerSpec(
            key=key,
            lon=leaf.lon,
            lat=leaf.lat,
            store_id=leaf.key,
            label=getattr(record, "name", "") or "",
        )

    def _reconcile(self, target: dict[MarkerKey, MarkerSpec]) -> RenderDiff:
        destroyed = [k for k in self._handles if k not in target]
        for key in destroyed:
            self._surface.destroy(self._handles.pop(key))

        created = [spec for key, spec in target.items() if key not in self._handles]
        for spec in created:
            self._handles[spec.key] = self._surface.create(spec)

        if created or destroyed:
            log.debug(
                "Render pass: +%d -%d (live=%d, state=%s)",
                len(created),
                len(destroyed),
                len(self._handles),
                self._state,
            )
        return RenderDiff(created=tuple(created), destroyed=tuple(destroyed))
