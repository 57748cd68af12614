from __future__ import annotations

import asyncio

import pytest

from clusters.manager import ClusterSetManager
from nearby.client import (
    NearbyLookupError,
    NearbyPlace,
    NearbyPlacesResponse,
    NearbyStoresResponse,
    SimilarStore,
)
from render.surface import RecordingSurface
from render.viewport import ViewportRenderer
from selection.cancel import CancellationToken
from selection.controller import NEARBY_ERROR_MESSAGE, NearbyState, SelectionController
from stores.types import StoreRecord


class FakeNearbyClient:
    """
    In-process nearby service. Lookups for ids in `gates` wait until the gate opens;
    ids in `finish_after_cancel` ignore cancellation and complete anyway.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, float]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failing: set[tuple[str, str]] = set()
        self.finish_after_cancel: set[str] = set()

    async def nearby_stores(self, store_id, *, radius_m, token):
        self.calls.append(("stores", store_id, radius_m))
        await self._wait(store_id)
        if ("stores", store_id) in self.failing:
            raise NearbyLookupError("stores lookup failed")
        return NearbyStoresResponse(
            stores=[
                SimilarStore(id=f"{store_id}-sim", name="Similar", lat=-6.2, lon=106.8)
            ],
            count=1,
        )

    async def nearby_places(self, store_id, *, radius_m, token):
        self.calls.append(("places", store_id, radius_m))
        await self._wait(store_id)
        if ("places", store_id) in self.failing:
            raise NearbyLookupError("places lookup failed")
        return NearbyPlacesResponse(
            stores=[
                NearbyPlace(
                    id=f"{store_id}-poi",
                    name="Warung",
                    top_category="Eating Places",
                    lat=-6.2,
                    lon=106.8,
                )
            ],
            counts={"Eating Places": 1},
        )

    async def _wait(self, store_id: str) -> None:
        gate = self.gates.get(store_id)
        if gate is None:
            return
        try:
            await gate.wait()
        except asyncio.CancelledError:
            if store_id not in self.finish_after_cancel:
                raise


def _store(store_id: str) -> StoreRecord:
    return StoreRecord(id=store_id, lat=-6.2, lon=106.8, name=f"Store {store_id}")


def _controller(client) -> SelectionController:
    mgr = ClusterSetManager()
    mgr.set_base([_store("A"), _store("B")])
    renderer = ViewportRenderer(mgr, RecordingSurface())
    return SelectionController(renderer, client)


def test_focus_loads_both_lookups():
    client = FakeNearbyClient()
    ctrl = _controller(client)

    result = asyncio.run(ctrl.set_focus(_store("A")))

    assert not result.superseded
    assert result.fly_to is not None and result.fly_to.zoom == 16.0
    assert ctrl.focused.id == "A"
    assert [s.id for s in ctrl.nearby.similar_stores] == ["A-sim"]
    assert [p.id for p in ctrl.nearby.nearby_places] == ["A-poi"]
    assert ctrl.nearby.nearby_counts == {"Eating Places": 1}
    assert ctrl.nearby.loading is False
    assert ctrl.nearby.error is None
    assert sorted(client.calls) == [("places", "A", 250.0), ("stores", "A", 1000.0)]


def test_last_focus_wins():
    client = FakeNearbyClient()
    ctrl = _controller(client)

    async def scenario():
        gate_a = asyncio.Event()
        client.gates["A"] = gate_a
        task_a = asyncio.create_task(ctrl.set_focus(_store("A")))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        result_b = await ctrl.set_focus(_store("B"))
        gate_a.set()
        result_a = await task_a
        return result_a, result_b

    result_a, result_b = asyncio.run(scenario())

    assert result_a.superseded
    assert not result_b.superseded
    assert ctrl.focused.id == "B"
    assert [s.id for s in ctrl.nearby.similar_stores] == ["B-sim"]
    assert [p.id for p in ctrl.nearby.nearby_places] == ["B-poi"]
    # Cancellation is not an error.
    assert ctrl.nearby.error is None


def _supersede_a_with_b(client, ctrl):
    async def scenario():
        client.gates["A"] = asyncio.Event()
        task_a = asyncio.create_task(ctrl.set_focus(_store("A")))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        result_b = await ctrl.set_focus(_store("B"))
        result_a = await task_a
        return result_a, result_b

    return asyncio.run(scenario())


def test_results_finishing_after_a_newer_focus_are_discarded():
    client = FakeNearbyClient()
    client.finish_after_cancel.add("A")
    ctrl = _controller(client)

    result_a, result_b = _supersede_a_with_b(client, ctrl)

    assert result_a.superseded
    assert not result_b.superseded
    assert ctrl.focused.id == "B"
    assert [s.id for s in ctrl.nearby.similar_stores] == ["B-sim"]
    assert [p.id for p in ctrl.nearby.nearby_places] == ["B-poi"]
    assert ctrl.nearby.error is None


def test_failure_finishing_after_a_newer_focus_is_not_reported():
    client = FakeNearbyClient()
    client.finish_after_cancel.add("A")
    client.failing.add(("places", "A"))
    ctrl = _controller(client)

    result_a, _ = _supersede_a_with_b(client, ctrl)

    assert result_a.superseded
    assert ctrl.focused.id == "B"
    assert [s.id for s in ctrl.nearby.similar_stores] == ["B-sim"]
    assert ctrl.nearby.error is None
    assert ctrl.nearby.loading is False


def test_cancelled_caller_does_not_leave_nearby_loading():
    client = FakeNearbyClient()
    ctrl = _controller(client)

    async def scenario():
        client.gates["A"] = asyncio.Event()
        task = asyncio.create_task(ctrl.set_focus(_store("A")))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert ctrl.nearby.loading is True
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert ctrl.focused.id == "A"
    assert ctrl.nearby.loading is False
    assert ctrl.nearby.error is None


def test_category_counts_are_ordered_by_count():
    state = NearbyState(
        nearby_counts={"Banks": 2, "Eating Places": 7, "Schools": 2, "Pharmacies": 4}
    )
    assert state.category_counts() == [
        ("Eating Places", 7),
        ("Pharmacies", 4),
        ("Banks", 2),
        ("Schools", 2),
    ]
    assert state.to_payload()["categoryCounts"][0] == ["Eating Places", 7]


def test_one_failed_lookup_fails_both():
    client = FakeNearbyClient()
    client.failing.add(("places", "A"))
    ctrl = _controller(client)

    asyncio.run(ctrl.set_focus(_store("A")))

    assert ctrl.nearby.error == NEARBY_ERROR_MESSAGE
    assert ctrl.nearby.similar_stores == []
    assert ctrl.nearby.nearby_places == []
    assert ctrl.nearby.nearby_counts == {}
    assert ctrl.nearby.loading is False


def test_clearing_focus_resets_nearby_state():
    client = FakeNearbyClient()
    ctrl = _controller(client)

    async def scenario():
        await ctrl.set_focus(_store("A"))
        return await ctrl.set_focus(None)

    result = asyncio.run(scenario())

    assert ctrl.focused is None
    assert result.fly_to is None
    assert len(result.diff.destroyed) == 1
    assert ctrl.nearby.similar_stores == []
    assert ctrl.nearby.error is None


def test_cancellation_token_runs_callbacks_once():
    token = CancellationToken()
    calls: list[str] = []
    token.on_cancel(lambda: calls.append("first"))
    token.cancel()
    token.cancel()
    # Registered after cancellation: runs immediately.
    token.on_cancel(lambda: calls.append("late"))
    assert calls == ["first", "late"]
    assert token.cancelled
