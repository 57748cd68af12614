from __future__ import annotations

from functools import lru_cache

from pyproj import Transformer


_MAX_MERCATOR_LAT = 85.05112878
# Half of the EPSG:3857 world width in meters.
_HALF_WORLD_M = 20037508.342789244


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@lru_cache(maxsize=1)
def transformer_3857_to_4326() -> Transformer:
    return Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def lonlat_to_world(lon: float, lat: float) -> tuple[float, float]:
    """
    Project lon/lat to normalized Web Mercator "world" coordinates.

    x grows east and y grows south, both in [0, 1]; one unit is the full width of
    the map at zoom 0, so a distance of `px / (extent * 2**z)` is `px` screen
    pixels at zoom `z` for tiles `extent` pixels wide.
    """
    lat = _clamp(float(lat), -_MAX_MERCATOR_LAT, _MAX_MERCATOR_LAT)
    mx, my = transformer_4326_to_3857().transform(float(lon), lat)
    x = float(mx) / (2.0 * _HALF_WORLD_M) + 0.5
    y = 0.5 - float(my) / (2.0 * _HALF_WORLD_M)
    return _clamp(x, 0.0, 1.0), _clamp(y, 0.0, 1.0)


def world_to_lonlat(x: float, y: float) -> tuple[float, float]:
    mx = (float(x) - 0.5) * 2.0 * _HALF_WORLD_M
    my = (0.5 - float(y)) * 2.0 * _HALF_WORLD_M
    lon, lat = transformer_3857_to_4326().transform(mx, my)
    return float(lon), float(lat)


def world_radius(radius_px: float, *, extent: float, zoom: int) -> float:
    """Screen-pixel radius at `zoom` expressed in world units."""
    return float(radius_px) / (float(extent) * (2 ** int(zoom)))


def wrap_lon(lon: float) -> float:
    """Wrap any longitude into [-180, 180)."""
    return ((float(lon) + 180.0) % 360.0 + 360.0) % 360.0 - 180.0
