from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Protocol

from render.types import MarkerKey, MarkerSpec


@dataclass(frozen=True)
class MarkerHandle:
    serial: int
    spec: MarkerSpec

    @property
    def key(self) -> MarkerKey:
        return self.spec.key


class MarkerSurface(Protocol):
    """
    Whatever draws markers. The renderer creates and destroys handles through it.
    """

    def create(self, spec: MarkerSpec) -> MarkerHandle: ...

    def destroy(self, handle: MarkerHandle) -> None: ...


@dataclass
class RecordingSurface(MarkerSurface):
    """
    In-process surface that keeps the live handles and lifetime counters.

    The HTTP layer forwards the renderer's diffs to the browser; this surface is the
    server-side mirror of what the browser is showing.
    """

    live: dict[int, MarkerHandle] = field(default_factory=dict)
    created_total: int = 0
    destroyed_total: int = 0
    _serials: "itertools.count[int]" = field(
        default_factory=lambda: itertools.count(1), repr=False
    )

    def create(self, spec: MarkerSpec) -> MarkerHandle:
        handle = MarkerHandle(serial=next(self._serials), spec=spec)
        self.live[handle.serial] = handle
        self.created_total += 1
        return handle

    def destroy(self, handle: MarkerHandle) -> None:
        if self.live.pop(handle.serial, None) is None:
            raise KeyError(f"Marker handle {handle.serial} destroyed twice")
        self.destroyed_total += 1

    def live_keys(self) -> set[MarkerKey]:
        return {h.key for h in self.live.values()}
