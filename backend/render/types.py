from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from geo.aoi import BBox

MarkerKind = Literal["cluster", "store", "focus"]


class MarkerNotFoundError(KeyError):
    """The marker key is unknown or no longer rendered."""


@dataclass(frozen=True)
class Viewport:
    """
    Visible map region. `bbox` is None until the map reports its bounds.
    """

    bbox: BBox | None
    zoom: float


@dataclass(frozen=True)
class MarkerKey:
    """
    Stable marker identity.

    Clustered markers are keyed by the index generation plus the node-id path from
    the top-level node down to the rendered node. The focused marker is keyed by
    its store id alone.
    """

    kind: MarkerKind
    generation: int = 0
    path: tuple[int, ...] = ()
    store_id: str | None = None

    def token(self) -> str:
        if self.kind == "focus":
            return f"focus:{self.store_id}"
        return f"{self.kind}:{self.generation}:{'.'.join(str(p) for p in self.path)}"

    @classmethod
    def parse(cls, token: str) -> "MarkerKey":
        kind, _, rest = (token or "").partition(":")
        if kind == "focus" and rest:
            return cls(kind="focus", store_id=rest)
        if kind in ("cluster", "store"):
            generation, _, path = rest.partition(":")
            try:
                return cls(
                    kind=kind,  # type: ignore[arg-type]
                    generation=int(generation),
                    path=tuple(int(p) for p in path.split(".") if p),
                )
            except ValueError:
                pass
        raise MarkerNotFoundError(token)


@dataclass(frozen=True)
class MarkerSpec:
    key: MarkerKey
    lon: float
    lat: float
    count: int = 1
    store_id: str | None = None
    cluster_id: int | None = None
    label: str = ""

    @property
    def kind(self) -> MarkerKind:
        return self.key.kind

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key.token(),
            "kind": self.kind,
            "lon": self.lon,
            "lat": self.lat,
            "count": self.count,
            "storeId": self.store_id,
            "label": self.label,
        }


@dataclass(frozen=True)
class RenderDiff:
    created: tuple[MarkerSpec, ...] = ()
    destroyed: tuple[MarkerKey, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.created and not self.destroyed

    def to_payload(self) -> dict[str, Any]:
        return {
            "create": [m.to_payload() for m in self.created],
            "destroy": [k.token() for k in self.destroyed],
        }


@dataclass(frozen=True)
class FlyTo:
    lon: float
    lat: float
    zoom: float
    duration_ms: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "center": {"lon": self.lon, "lat": self.lat},
            "zoom": self.zoom,
            "durationMs": self.duration_ms,
        }
