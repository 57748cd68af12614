from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable

import shapely
from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from geo.aoi import BBox
from geo.mercator import lonlat_to_world, world_radius, world_to_lonlat, wrap_lon


class ClusterNotFoundError(KeyError):
    """The id does not name a cluster of this index."""


@dataclass(frozen=True)
class ClusterOptions:
    # Merge radius in screen pixels, for tiles `extent` pixels wide.
    radius: float = 60.0
    extent: float = 512.0
    min_zoom: int = 0
    max_zoom: int = 16
    min_points: int = 2


@dataclass(frozen=True, eq=False)
class ClusterNode:
    """
    A leaf (one source point) or an aggregate of nodes from the next zoom level.

    `zoom` is the level the node was created at: `max_zoom + 1` for leaves.
    Leaves carry the source point `key` and `payload`.
    """

    id: int
    lon: float
    lat: float
    point_count: int
    zoom: int
    children: tuple["ClusterNode", ...] = ()
    key: str | None = None
    payload: Any = field(default=None, repr=False)

    @property
    def is_cluster(self) -> bool:
        return bool(self.children)


@dataclass(frozen=True)
class _Level:
    zoom: int
    nodes: tuple[ClusterNode, ...]
    xs: tuple[float, ...]
    ys: tuple[float, ...]
    tree: STRtree


@dataclass(eq=False)
class _Slot:
    # Build-time state of a node at one level; `zoom` marks the last level that
    # already claimed it.
    node: ClusterNode
    x: float
    y: float
    zoom: float = math.inf


@dataclass
class SpatialIndex:
    """
    Hierarchical point clustering, one level per integer zoom.

    Notes:
    - Positions are clustered in normalized Web Mercator (see `geo.mercator`).
    - Level `max_zoom + 1` holds the raw points; every lower level greedily merges
      nodes of the level above that sit within `radius` screen pixels.
    - Immutable once built; node ids are only meaningful inside this index.
    """

    options: ClusterOptions = field(default_factory=ClusterOptions)
    generation: int = 0

    _levels: dict[int, _Level] = field(default_factory=dict, repr=False)
    _clusters: dict[int, ClusterNode] = field(default_factory=dict, repr=False)
    _point_count: int = field(default=0, repr=False)

    def __len__(self) -> int:
        return self._point_count

    def get_clusters(self, bbox: BBox, zoom: float) -> list[ClusterNode]:
        """
        Top-level nodes at `floor(zoom)` whose position falls inside `bbox`.
        """
        min_lon = 180.0 if bbox.min_lon == 180.0 else wrap_lon(bbox.min_lon)
        max_lon = 180.0 if bbox.max_lon == 180.0 else wrap_lon(bbox.max_lon)
        min_lat = max(-90.0, min(90.0, bbox.min_lat))
        max_lat = max(-90.0, min(90.0, bbox.max_lat))

        if bbox.max_lon - bbox.min_lon >= 360.0:
            min_lon, max_lon = -180.0, 180.0
        elif min_lon > max_lon:
            eastern = self._range(min_lon, min_lat, 180.0, max_lat, zoom)
            western = self._range(-180.0, min_lat, max_lon, max_lat, zoom)
            return eastern + western

        return self._range(min_lon, min_lat, max_lon, max_lat, zoom)

    def get_cluster(self, cluster_id: int) -> ClusterNode:
        node = self._clusters.get(cluster_id)
        if node is None:
            raise ClusterNotFoundError(cluster_id)
        return node

    def get_children(self, cluster_id: int) -> list[ClusterNode]:
        return list(self.get_cluster(cluster_id).children)

    def get_expansion_zoom(self, cluster_id: int) -> int:
        """
        Lowest zoom at which the cluster shows up as more than one node.
        """
        node = self.get_cluster(cluster_id)
        zoom = node.zoom
        while zoom <= self.options.max_zoom:
            children = node.children
            zoom += 1
            if len(children) != 1:
                break
            node = children[0]
        return zoom

    def limit_zoom(self, zoom: float) -> int:
        z = int(math.floor(float(zoom)))
        return max(self.options.min_zoom, min(z, self.options.max_zoom + 1))

    def _range(
        self,
        min_lon: float,
        min_lat: float,
        max_lon: float,
        max_lat: float,
        zoom: float,
    ) -> list[ClusterNode]:
        level = self._levels.get(self.limit_zoom(zoom))
        if level is None or not level.nodes:
            return []
        # World y grows southwards.
        x0, y1 = lonlat_to_world(min_lon, min_lat)
        x1, y0 = lonlat_to_world(max_lon, max_lat)
        idxs = sorted(_to_int_list(level.tree.query(shapely_box(x0, y0, x1, y1))))
        return [level.nodes[i] for i in idxs]


def build_spatial_index(
    points: Iterable[tuple[str, float, float, Any]],
    *,
    options: ClusterOptions | None = None,
    generation: int = 0,
) -> SpatialIndex:
    """
    Build a `SpatialIndex` from `(id, lat, lon, payload)` tuples.

    Leaves get ids `0..n-1` in input order; clusters get ids from `n` upwards in
    creation order, so a rebuild of the same input yields the same ids.
    """
    opts = options or ClusterOptions()
    idx = SpatialIndex(options=opts, generation=generation)

    slots: list[_Slot] = []
    for i, (pid, lat, lon, payload) in enumerate(points):
        lat = float(lat)
        lon = float(lon)
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ValueError(f"Point {pid!r} has non-finite coordinates")
        x, y = lonlat_to_world(lon, lat)
        leaf = ClusterNode(
            id=i,
            lon=lon,
            lat=lat,
            point_count=1,
            zoom=opts.max_zoom + 1,
            key=str(pid),
            payload=payload,
        )
        slots.append(_Slot(node=leaf, x=x, y=y))
    idx._point_count = len(slots)

    next_id = len(slots)
    level = _make_level(opts.max_zoom + 1, slots)
    idx._levels[level.zoom] = level
    for z in range(opts.max_zoom, opts.min_zoom - 1, -1):
        slots, next_id = _cluster_level(slots, level, z, opts, next_id, idx._clusters)
        level = _make_level(z, slots)
        idx._levels[z] = level

    return idx


def _make_level(zoom: int, slots: list[_Slot]) -> _Level:
    xs = tuple(s.x for s in slots)
    ys = tuple(s.y for s in slots)
    geoms = [Point(x, y) for x, y in zip(xs, ys)]
    return _Level(
        zoom=zoom,
        nodes=tuple(s.node for s in slots),
        xs=xs,
        ys=ys,
        tree=STRtree(geoms),
    )


def _cluster_level(
    slots: list[_Slot],
    level: _Level,
    zoom: int,
    opts: ClusterOptions,
    next_id: int,
    registry: dict[int, ClusterNode],
) -> tuple[list[_Slot], int]:
    r = world_radius(opts.radius, extent=opts.extent, zoom=zoom)
    neighbors = _neighbors_within(level, r)

    out: list[_Slot] = []
    for i, p in enumerate(slots):
        if p.zoom <= zoom:
            continue
        p.zoom = zoom

        origin = p.node.point_count
        total = origin
        for j in neighbors[i]:
            b = slots[j]
            if b.zoom > zoom:
                total += b.node.point_count

        if total > origin and total >= opts.min_points:
            wx = p.x * origin
            wy = p.y * origin
            members = [p.node]
            for j in neighbors[i]:
                b = slots[j]
                if b.zoom <= zoom:
                    continue
                b.zoom = zoom
                n = b.node.point_count
                wx += b.x * n
                wy += b.y * n
                members.append(b.node)

            cx = wx / total
            cy = wy / total
            lon, lat = world_to_lonlat(cx, cy)
            node = ClusterNode(
                id=next_id,
                lon=lon,
                lat=lat,
                point_count=total,
                zoom=zoom,
                children=tuple(members),
            )
            registry[next_id] = node
            next_id += 1
            out.append(_Slot(node=node, x=cx, y=cy))
        else:
            out.append(p)
            if total > 1:
                # Too few points for a cluster (min_points > 2): keep them as-is.
                for j in neighbors[i]:
                    b = slots[j]
                    if b.zoom <= zoom:
                        continue
                    b.zoom = zoom
                    out.append(b)

    return out, next_id


def _neighbors_within(level: _Level, r: float) -> list[list[int]]:
    """
    For every node of `level`, the sorted indices of nodes within world distance `r`.
    """
    n = len(level.nodes)
    out: list[list[int]] = [[] for _ in range(n)]
    if n == 0:
        return out

    xs = level.xs
    ys = level.ys
    boxes = shapely.box(
        [x - r for x in xs],
        [y - r for y in ys],
        [x + r for x in xs],
        [y + r for y in ys],
    )
    src, dst = level.tree.query(boxes)
    r2 = r * r
    for i, j in zip(_to_int_list(src), _to_int_list(dst)):
        dx = xs[j] - xs[i]
        dy = ys[j] - ys[i]
        if dx * dx + dy * dy <= r2:
            out[i].append(j)
    for found in out:
        found.sort()
    return out


def _to_int_list(idxs: Any) -> list[int]:
    if idxs is None:
        return []
    return [int(i) for i in idxs]
