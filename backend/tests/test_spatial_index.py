from __future__ import annotations

import math
import random

import pytest

from geo.aoi import WORLD, BBox
from geo.index import ClusterNotFoundError, ClusterOptions, build_spatial_index

JAKARTA = (-6.2088, 106.8456)


def _tight_points(n: int, *, lat: float = JAKARTA[0], lon: float = JAKARTA[1]):
    # ~11 m apart: one cluster at every zoom of the default options.
    return [
        (f"s{i}", lat + (i % 3) * 0.0001, lon + (i // 3) * 0.0001, None)
        for i in range(n)
    ]


def _scattered_points(n: int, seed: int = 7):
    rng = random.Random(seed)
    pts = [
        (f"p{i}", JAKARTA[0] + rng.uniform(-0.5, 0.5), JAKARTA[1] + rng.uniform(-0.5, 0.5), None)
        for i in range(n)
    ]
    # A few far-away stores so low zooms have more than one top-level node.
    pts += [
        ("far-1", 51.5, -0.12, None),
        ("far-2", -33.86, 151.2, None),
        ("far-3", 40.71, -74.0, None),
    ]
    return pts


def _leaf_keys(index, node):
    keys: list[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_cluster:
            stack.extend(index.get_children(current.id))
        else:
            keys.append(current.key)
    return keys


def test_close_points_merge_into_one_cluster():
    index = build_spatial_index(_tight_points(9))
    nodes = index.get_clusters(WORLD, 10)
    assert len(nodes) == 1
    assert nodes[0].is_cluster
    assert nodes[0].point_count == 9
    assert nodes[0].lat == pytest.approx(JAKARTA[0] + 0.0001, abs=1e-6)
    assert nodes[0].lon == pytest.approx(JAKARTA[1] + 0.0001, abs=1e-6)


def test_every_point_appears_exactly_once_at_every_zoom():
    pts = _scattered_points(300)
    index = build_spatial_index(pts)
    all_keys = sorted(pid for pid, *_ in pts)

    for zoom in range(0, 18):
        nodes = index.get_clusters(WORLD, zoom)
        keys: list[str] = []
        for node in nodes:
            leaves = _leaf_keys(index, node)
            assert node.point_count == len(leaves)
            keys.extend(leaves)
        assert sorted(keys) == all_keys, f"zoom {zoom}"


def test_expansion_zoom_splits_the_cluster():
    index = build_spatial_index(_scattered_points(300))
    for zoom in (3, 8, 12):
        for node in index.get_clusters(WORLD, zoom):
            if not node.is_cluster:
                continue
            ez = index.get_expansion_zoom(node.id)
            assert ez >= zoom
            assert node.id not in {n.id for n in index.get_clusters(WORLD, ez)}


def test_get_clusters_is_idempotent_and_deterministic():
    pts = _scattered_points(200)
    a = build_spatial_index(pts)
    b = build_spatial_index(pts)
    bbox = BBox(min_lon=106.5, min_lat=-6.6, max_lon=107.2, max_lat=-5.8)
    first = [n.id for n in a.get_clusters(bbox, 9.7)]
    assert first == [n.id for n in a.get_clusters(bbox, 9.7)]
    assert first == [n.id for n in b.get_clusters(bbox, 9.7)]
    # Fractional zoom is floored.
    assert first == [n.id for n in a.get_clusters(bbox, 9)]


def test_zoom_is_clamped_to_the_index_levels():
    pts = _tight_points(5)
    index = build_spatial_index(pts)
    # Above max_zoom the raw points are returned.
    assert sorted(n.key for n in index.get_clusters(WORLD, 25)) == sorted(
        pid for pid, *_ in pts
    )
    assert [n.id for n in index.get_clusters(WORLD, -3)] == [
        n.id for n in index.get_clusters(WORLD, 0)
    ]


def test_bbox_crossing_the_antimeridian():
    pts = [
        ("east", 0.0, 179.9, None),
        ("west", 0.0, -179.9, None),
        ("greenwich", 0.0, 0.0, None),
    ]
    index = build_spatial_index(pts)
    crossing = BBox(min_lon=179.0, min_lat=-1.0, max_lon=-179.0, max_lat=1.0)
    assert sorted(n.key for n in index.get_clusters(crossing, 17)) == ["east", "west"]

    wide = BBox(min_lon=-200.0, min_lat=-1.0, max_lon=200.0, max_lat=1.0)
    assert len(index.get_clusters(wide, 17)) == 3


def test_bbox_starting_on_the_antimeridian_keeps_points_at_180():
    index = build_spatial_index([("a", 0.0, 180.0, None), ("b", 0.0, -178.0, None)])
    bbox = BBox(min_lon=180.0, min_lat=-1.0, max_lon=185.0, max_lat=1.0)
    assert sorted(n.key for n in index.get_clusters(bbox, 17)) == ["a", "b"]


def test_children_of_unknown_or_leaf_ids_raise():
    index = build_spatial_index(_tight_points(4))
    (cluster,) = index.get_clusters(WORLD, 5)
    assert set(_leaf_keys(index, cluster)) == {"s0", "s1", "s2", "s3"}
    with pytest.raises(ClusterNotFoundError):
        index.get_children(0)  # a leaf
    with pytest.raises(ClusterNotFoundError):
        index.get_children(10_000)


def test_min_points_keeps_small_groups_apart():
    index = build_spatial_index(
        _tight_points(2), options=ClusterOptions(min_points=3)
    )
    nodes = index.get_clusters(WORLD, 5)
    assert len(nodes) == 2
    assert not any(n.is_cluster for n in nodes)


def test_empty_index_and_invalid_points():
    empty = build_spatial_index([])
    assert len(empty) == 0
    assert empty.get_clusters(WORLD, 5) == []
    with pytest.raises(ValueError):
        build_spatial_index([("x", math.nan, 106.8, None)])
