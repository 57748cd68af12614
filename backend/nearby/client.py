from __future__ import annotations

from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from selection.cancel import CancellationToken


class NearbyLookupError(RuntimeError):
    """A nearby-data lookup failed for a reason other than cancellation."""


class SimilarStore(BaseModel):
    id: str
    name: str = ""
    address: str = ""
    lat: float
    lon: float

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)


class NearbyPlace(BaseModel):
    id: str
    name: str = ""
    address: str = ""
    top_category: str = ""
    lat: float
    lon: float

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)


class NearbyStoresResponse(BaseModel):
    stores: list[SimilarStore] = Field(default_factory=list)
    count: int = 0


class NearbyPlacesResponse(BaseModel):
    stores: list[NearbyPlace] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)


class NearbyClient(Protocol):
    """
    External nearby-data service.

    - HttpNearbyClient: the real HTTP backend
    - tests: in-process fakes
    """

    async def nearby_stores(
        self, store_id: str, *, radius_m: float, token: CancellationToken
    ) -> NearbyStoresResponse: ...

    async def nearby_places(
        self, store_id: str, *, radius_m: float, token: CancellationToken
    ) -> NearbyPlacesResponse: ...


class HttpNearbyClient(NearbyClient):
    def __init__(
        self,
        base_url: str,
        *,
        stores_path: str = "/nearby_alfamarts",
        places_path: str = "/nearby_places",
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.stores_path = stores_path
        self.places_path = places_path
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_s,
            headers={"accept": "application/json"},
        )

    async def nearby_stores(
        self, store_id: str, *, radius_m: float, token: CancellationToken
    ) -> NearbyStoresResponse:
        data = await self._get(self.stores_path, store_id, radius_m, token)
        return self._validate(NearbyStoresResponse, data)

    async def nearby_places(
        self, store_id: str, *, radius_m: float, token: CancellationToken
    ) -> NearbyPlacesResponse:
        data = await self._get(self.places_path, store_id, radius_m, token)
        return self._validate(NearbyPlacesResponse, data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(
        self, path: str, store_id: str, radius_m: float, token: CancellationToken
    ) -> Any:
        token.raise_if_cancelled()
        try:
            resp = await self._client.get(
                path, params={"id": store_id, "radius_m": int(radius_m)}
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise NearbyLookupError(f"{path} failed for {store_id}: {e}") from e
        except ValueError as e:
            raise NearbyLookupError(f"{path} returned invalid JSON: {e}") from e

    @staticmethod
    def _validate(model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise NearbyLookupError(f"Unexpected nearby payload: {e}") from e
