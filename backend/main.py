import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from api.explorer import ExplorerSession, StoreNotFoundError, record_payload
from geo.aoi import BBox
from geo.index import ClusterNotFoundError
from nearby.client import SimilarStore
from render.types import MarkerNotFoundError, Viewport
from settings.registry import dataset_path, get_settings
from stores.filters import FILTER_TYPES, FilterType, StoreFilter
from stores.loaders import DatasetNotFoundError
from telemetry.singleton import get_store

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    if get_session.cache_info().currsize:
        await get_session().aclose()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiBbox(BaseModel):
    minLon: float
    minLat: float
    maxLon: float
    maxLat: float


class ApiViewport(BaseModel):
    # None until the map has reported its bounds.
    bbox: ApiBbox | None = None
    zoom: float = Field(ge=0.0, le=24.0)


class ApiFilter(BaseModel):
    query: str = ""
    filterType: FilterType = "name_address"
    facets: dict[str, list[str]] = Field(default_factory=dict)


class ApiExpand(BaseModel):
    key: str


class ApiFocus(BaseModel):
    # Both empty clears the focus.
    storeId: str | None = None
    similar: SimilarStore | None = None


@lru_cache(maxsize=1)
def get_session() -> ExplorerSession:
    session = ExplorerSession(get_settings())
    session.load(dataset_path())
    return session


def current_session() -> ExplorerSession:
    try:
        return get_session()
    except DatasetNotFoundError as e:
        log.error("Store dataset unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e


def _state(session: ExplorerSession) -> dict:
    return {
        "state": session.renderer.state,
        "filteredCount": session.clusters.filtered_count,
        "totalCount": len(session.clusters.records),
        "liveMarkers": len(session.surface.live),
    }


@app.get("/config")
async def config(session: ExplorerSession = Depends(current_session)):
    s = session.settings
    return {
        "id": s.id,
        "title": s.title,
        "defaultView": s.defaultView.model_dump(),
        "focus": s.focus.model_dump(),
        "filterTypes": list(FILTER_TYPES),
        **_state(session),
    }


@app.get("/stores/{store_id}")
async def store_detail(store_id: str, session: ExplorerSession = Depends(current_session)):
    try:
        return record_payload(session.find(store_id))
    except StoreNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Unknown store: {store_id}") from e


@app.get("/filters/options")
async def filters_options(session: ExplorerSession = Depends(current_session)):
    return session.filter_options()


@app.post("/filter")
async def apply_filter(body: ApiFilter, session: ExplorerSession = Depends(current_session)):
    flt = StoreFilter(
        query=body.query,
        filter_type=body.filterType,
        facets={k: tuple(v) for k, v in body.facets.items()},
    )
    changed, diff = session.apply_filter(flt)
    return {
        "changed": changed,
        "activeFilterCount": flt.active_filter_count(),
        "diff": diff.to_payload(),
        **_state(session),
    }


@app.post("/viewport")
async def viewport(body: ApiViewport, session: ExplorerSession = Depends(current_session)):
    bbox = (
        BBox(
            min_lon=body.bbox.minLon,
            min_lat=body.bbox.minLat,
            max_lon=body.bbox.maxLon,
            max_lat=body.bbox.maxLat,
        ).normalized()
        if body.bbox is not None
        else None
    )
    diff = session.move(Viewport(bbox=bbox, zoom=body.zoom))
    return {"diff": diff.to_payload(), **_state(session)}


@app.post("/clusters/expand")
async def expand_cluster(body: ApiExpand, session: ExplorerSession = Depends(current_session)):
    try:
        fly = session.expand_cluster(body.key)
    except (MarkerNotFoundError, ClusterNotFoundError) as e:
        # Stale or unknown key: the client should re-render before retrying.
        raise HTTPException(status_code=409, detail=f"Marker not rendered: {body.key}") from e
    return {"flyTo": fly.to_payload()}


@app.post("/focus")
async def focus(body: ApiFocus, session: ExplorerSession = Depends(current_session)):
    try:
        result = await session.focus(body.storeId, similar=body.similar)
    except StoreNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Unknown store: {body.storeId}") from e
    focused = session.selection.focused
    return {
        "diff": result.diff.to_payload(),
        "flyTo": result.fly_to.to_payload() if result.fly_to is not None else None,
        "superseded": result.superseded,
        "focused": record_payload(focused) if focused is not None else None,
        "nearby": session.selection.nearby.to_payload(),
        **_state(session),
    }


@app.get("/nearby")
async def nearby(session: ExplorerSession = Depends(current_session)):
    focused = session.selection.focused
    return {
        "storeId": focused.id if focused is not None else None,
        **session.selection.nearby.to_payload(),
    }


@app.post("/export")
async def export(session: ExplorerSession = Depends(current_session)):
    table = await session.export()
    return Response(
        content=table.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{table.filename}"'},
    )


@app.get("/telemetry/summary")
async def telemetry_summary(event: str | None = None, limit: int = 10):
    store = get_store()
    if store is None:
        return {"enabled": False, "summary": [], "slowest": []}
    return {
        "enabled": True,
        "summary": store.summary(event=event),
        "slowest": store.slowest(event=event, limit=limit),
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(app, host="0.0.0.0", port=8080)
