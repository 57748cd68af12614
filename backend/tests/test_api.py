from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from api.explorer import ExplorerSession
from main import app, current_session
from nearby.client import HttpNearbyClient
from settings.registry import clear_settings_cache, dataset_path, get_settings

NEARBY_URL = "http://nearby.test"
JAKARTA_BBOX = {"minLon": 106.7, "minLat": -6.35, "maxLon": 107.0, "maxLat": -6.1}


class NearbyService:
    def __init__(self) -> None:
        self.failing_paths: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path in self.failing_paths:
            return httpx.Response(503, json={"detail": "down"})
        store_id = request.url.params["id"]
        if request.url.path == "/nearby_alfamarts":
            return httpx.Response(
                200,
                json={
                    "stores": [
                        {
                            "id": "ALF0002",
                            "name": "Alfamart Tebet 2",
                            "address": "Jl. Tebet No. 2, Jakarta",
                            "lat": -6.2019,
                            "lon": 106.816,
                        }
                    ],
                    "count": 1,
                },
            )
        return httpx.Response(
            200,
            json={
                "stores": [
                    {
                        "id": f"{store_id}-poi",
                        "name": "Warung Sate",
                        "address": "",
                        "top_category": "Eating Places",
                        "lat": -6.2,
                        "lon": 106.81,
                    }
                ],
                "counts": {"Eating Places": 1, "Retail": 3},
            },
        )


@pytest.fixture
def service() -> NearbyService:
    return NearbyService()


@pytest.fixture
def client(service):
    clear_settings_cache()
    nearby = HttpNearbyClient(
        NEARBY_URL,
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(service), base_url=NEARBY_URL
        ),
    )
    session = ExplorerSession(get_settings(), client=nearby)
    session.load(dataset_path())
    app.dependency_overrides[current_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_config_reports_the_catalog(client):
    resp = client.get("/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == "alfamart_indonesia"
    assert data["totalCount"] == 30
    assert data["filteredCount"] == 30
    assert data["defaultView"]["center"] == {"lat": -6.2088, "lon": 106.8456}
    assert "name_address" in data["filterTypes"]


def test_store_detail(client):
    resp = client.get("/stores/ALF0001")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Alfamart Menteng 1"
    assert data["demographics"]["gender"]["total"] == 2178
    assert client.get("/stores/nope").status_code == 404


def test_viewport_waits_for_bounds_then_renders_every_store(client):
    resp = client.post("/viewport", json={"bbox": None, "zoom": 11})
    assert resp.status_code == 200
    assert resp.json()["diff"] == {"create": [], "destroy": []}

    resp = client.post("/viewport", json={"bbox": JAKARTA_BBOX, "zoom": 11})
    data = resp.json()
    assert sum(m["count"] for m in data["diff"]["create"]) == 30
    assert data["liveMarkers"] == len(data["diff"]["create"])


def test_expand_cluster_flies_to_the_expansion_zoom(client):
    resp = client.post("/viewport", json={"bbox": JAKARTA_BBOX, "zoom": 3})
    (marker,) = resp.json()["diff"]["create"]
    assert marker["kind"] == "cluster"
    assert marker["count"] == 30

    resp = client.post("/clusters/expand", json={"key": marker["key"]})
    assert resp.status_code == 200
    fly = resp.json()["flyTo"]
    assert fly["zoom"] > 3
    assert fly["durationMs"] == 500

    assert client.post("/clusters/expand", json={"key": "cluster:999:1"}).status_code == 409
    assert client.post("/clusters/expand", json={"key": "garbage"}).status_code == 409


def test_filters(client):
    client.post("/viewport", json={"bbox": JAKARTA_BBOX, "zoom": 11})

    data = client.post("/filter", json={"query": "menteng"}).json()
    assert data["changed"] is True
    assert data["filteredCount"] == 4

    data = client.post("/filter", json={"facets": {"store_size": ["Large"]}}).json()
    assert data["filteredCount"] == 10
    assert data["activeFilterCount"] == 1

    data = client.post("/filter", json={"query": "zzz"}).json()
    assert data["filteredCount"] == 0
    assert data["liveMarkers"] == 0

    data = client.post("/filter", json={}).json()
    assert data["filteredCount"] == 30
    assert data["liveMarkers"] > 0

    options = client.get("/filters/options").json()
    assert options["store_size"] == ["Large", "Medium", "Small"]
    assert options["parking"] == ["Available", "Not Available"]
    assert options["expenditure_band"] == ["High", "Low", "Middle", "Upper Middle"]


def test_focus_and_defocus(client):
    client.post("/viewport", json={"bbox": JAKARTA_BBOX, "zoom": 11})
    live_before = client.post("/viewport", json={"bbox": JAKARTA_BBOX, "zoom": 11}).json()[
        "liveMarkers"
    ]

    data = client.post("/focus", json={"storeId": "ALF0001"}).json()
    assert data["state"] == "focused"
    assert data["liveMarkers"] == 1
    assert data["flyTo"]["zoom"] == 16
    assert data["flyTo"]["durationMs"] == 1000
    assert data["nearby"]["error"] is None
    assert [s["id"] for s in data["nearby"]["similarStores"]] == ["ALF0002"]
    assert data["nearby"]["nearbyCounts"] == {"Eating Places": 1, "Retail": 3}
    assert data["nearby"]["categoryCounts"] == [["Retail", 3], ["Eating Places", 1]]

    nearby = client.get("/nearby").json()
    assert nearby["storeId"] == "ALF0001"
    assert nearby["nearbyPlaces"][0]["id"] == "ALF0001-poi"

    data = client.post("/focus", json={}).json()
    assert data["state"] == "clustered"
    assert data["liveMarkers"] == live_before
    assert data["nearby"]["similarStores"] == []


def test_focus_on_a_similar_store_outside_the_catalog(client):
    similar = {"id": "EXT-1", "name": "Alfamart Luar", "address": "Jl. Luar", "lat": -6.3, "lon": 106.9}
    data = client.post("/focus", json={"similar": similar}).json()
    assert data["focused"]["id"] == "EXT-1"
    assert data["focused"]["category"] == "Convenience store"
    assert data["focused"]["demographics"]["hasDemographics"] is False


def test_focus_reports_nearby_failures(client, service):
    service.failing_paths.add("/nearby_places")
    data = client.post("/focus", json={"storeId": "ALF0003"}).json()
    assert data["nearby"]["error"] == "Failed to load nearby store data"
    assert data["nearby"]["similarStores"] == []
    assert client.post("/focus", json={"storeId": "nope"}).status_code == 404


def test_export_csv(client):
    client.post("/filter", json={"query": "menteng"})
    resp = client.post("/export")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "filtered-stores-" in resp.headers["content-disposition"]
    lines = resp.text.strip().splitlines()
    assert len(lines) == 5
    assert "POI Retail" in lines[0]


def test_telemetry_summary_when_disabled(client):
    assert client.get("/telemetry/summary").json() == {
        "enabled": False,
        "summary": [],
        "slowest": [],
    }
