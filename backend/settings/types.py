from __future__ import annotations

from pydantic import BaseModel, Field

from geo.index import ClusterOptions
from nearby.export import POI_CATEGORIES


class ViewCenter(BaseModel):
    lat: float
    lon: float


class DefaultView(BaseModel):
    center: ViewCenter
    zoom: float = Field(ge=0.0, le=24.0)


class DatasetSettings(BaseModel):
    # Repo-relative or absolute path to the store CSV.
    path: str


class ClusteringSettings(BaseModel):
    radius: float = Field(default=60.0, gt=0.0)
    extent: float = Field(default=512.0, gt=0.0)
    minZoom: int = Field(default=0, ge=0, le=30)
    maxZoom: int = Field(default=16, ge=0, le=30)
    minPoints: int = Field(default=2, ge=2)
    # Clusters with at most this many stores are shown as individual stores.
    expandThreshold: int = Field(default=8, ge=0)

    def options(self) -> ClusterOptions:
        return ClusterOptions(
            radius=self.radius,
            extent=self.extent,
            min_zoom=self.minZoom,
            max_zoom=max(self.minZoom, self.maxZoom),
            min_points=self.minPoints,
        )


class FocusSettings(BaseModel):
    zoom: float = Field(default=16.0, ge=0.0, le=24.0)
    flyDurationMs: int = Field(default=1000, ge=0)
    expansionFlyDurationMs: int = Field(default=500, ge=0)


class NearbySettings(BaseModel):
    baseUrl: str = "http://localhost:8000"
    storesPath: str = "/nearby_alfamarts"
    placesPath: str = "/nearby_places"
    similarRadiusM: float = Field(default=1000.0, gt=0.0)
    placesRadiusM: float = Field(default=250.0, gt=0.0)
    timeoutS: float = Field(default=10.0, gt=0.0)


class ExportSettings(BaseModel):
    placesRadiusM: float = Field(default=250.0, gt=0.0)
    concurrency: int = Field(default=8, ge=1, le=64)
    poiCategories: list[str] = Field(default_factory=lambda: list(POI_CATEGORIES))


class ExplorerSettings(BaseModel):
    id: str
    title: str
    dataset: DatasetSettings
    defaultView: DefaultView
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    focus: FocusSettings = Field(default_factory=FocusSettings)
    nearby: NearbySettings = Field(default_factory=NearbySettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
