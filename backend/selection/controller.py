from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from nearby.client import (
    NearbyClient,
    NearbyLookupError,
    NearbyPlace,
    SimilarStore,
)
from render.types import FlyTo, RenderDiff
from render.viewport import ViewportRenderer
from selection.cancel import CancellationToken
from stores.types import StoreRecord

log = logging.getLogger(__name__)

NEARBY_ERROR_MESSAGE = "Failed to load nearby store data"


@dataclass(frozen=True)
class NearbyState:
    similar_stores: list[SimilarStore] = field(default_factory=list)
    nearby_places: list[NearbyPlace] = field(default_factory=list)
    nearby_counts: dict[str, int] = field(default_factory=dict)
    loading: bool = False
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "similarStores": [s.model_dump() for s in self.similar_stores],
            "nearbyPlaces": [p.model_dump() for p in self.nearby_places],
            "nearbyCounts": dict(self.nearby_counts),
            "categoryCounts": [[c, n] for c, n in self.category_counts()],
            "loading": self.loading,
            "error": self.error,
        }

    def category_counts(self) -> list[tuple[str, int]]:
        """Per-category place counts, largest first; ties keep the service order."""
        return sorted(self.nearby_counts.items(), key=lambda kv: -kv[1])


@dataclass(frozen=True)
class FocusResult:
    diff: RenderDiff
    fly_to: FlyTo | None = None
    # True when a later focus change superseded this one before its lookups finished.
    superseded: bool = False


class SelectionController:
    """
    Tracks the focused store and the nearby data loaded for it.

    Last focus wins: each change cancels the previous token, and results are only
    applied while their token is still live.
    """

    def __init__(
        self,
        renderer: ViewportRenderer,
        client: NearbyClient,
        *,
        similar_radius_m: float = 1000.0,
        places_radius_m: float = 250.0,
    ) -> None:
        self._renderer = renderer
        self._client = client
        self.similar_radius_m = float(similar_radius_m)
        self.places_radius_m = float(places_radius_m)

        self._focused: StoreRecord | None = None
        self._token: CancellationToken | None = None
        self.nearby = NearbyState()

    @property
    def focused(self) -> StoreRecord | None:
        return self._focused

    async def set_focus(self, record: StoreRecord | None) -> FocusResult:
        if self._token is not None:
            self._token.cancel()
        token = CancellationToken()
        self._token = token
        self._focused = record

        if record is None:
            self.nearby = NearbyState()
            return FocusResult(diff=self._renderer.defocus())

        diff, fly = self._renderer.focus(record)
        self.nearby = NearbyState(loading=True)
        await self._load_nearby(record, token)
        return FocusResult(diff=diff, fly_to=fly, superseded=token.cancelled)

    async def _load_nearby(self, record: StoreRecord, token: CancellationToken) -> None:
        similar = asyncio.ensure_future(
            self._client.nearby_stores(
                record.id, radius_m=self.similar_radius_m, token=token
            )
        )
        places = asyncio.ensure_future(
            self._client.nearby_places(
                record.id, radius_m=self.places_radius_m, token=token
            )
        )
        token.on_cancel(similar.cancel)
        token.on_cancel(places.cancel)

        try:
            similar_resp, places_resp = await asyncio.gather(similar, places)
        except asyncio.CancelledError:
            if not token.cancelled:
                # The caller went away: nothing will finish this load.
                similar.cancel()
                places.cancel()
                self.nearby = NearbyState()
                raise
            log.debug("Nearby lookups for %s cancelled by a newer focus", record.id)
            return
        except NearbyLookupError as e:
            # One failed lookup fails the pair.
            similar.cancel()
            places.cancel()
            if token.cancelled:
                return
            log.warning("Nearby lookups for %s failed: %s", record.id, e)
            self.nearby = NearbyState(error=NEARBY_ERROR_MESSAGE)
            return

        if token.cancelled:
            return
        self.nearby = NearbyState(
            similar_stores=list(similar_resp.stores),
            nearby_places=list(places_resp.stores),
            nearby_counts=dict(places_resp.counts),
        )
