from __future__ import annotations

from dataclasses import dataclass, field


AGE_BANDS: tuple[str, ...] = (
    "00_04",
    "05_09",
    "10_14",
    "15_19",
    "20_24",
    "25_29",
    "30_34",
    "35_39",
    "40_44",
    "45_49",
    "50_54",
    "55_59",
    "60_64",
    "65_69",
    "70_74",
    "75Plus",
)
MALE_AGE_COLUMNS: tuple[str, ...] = tuple(f"M_{band}" for band in AGE_BANDS)
FEMALE_AGE_COLUMNS: tuple[str, ...] = tuple(f"F_{band}" for band in AGE_BANDS)

FACET_FIELDS: tuple[str, ...] = (
    "location_type",
    "store_size",
    "parking",
    "expenditure_band",
)

_ZERO_BINS: tuple[float, ...] = (0.0,) * len(AGE_BANDS)


@dataclass(frozen=True)
class Demographics:
    """
    Catchment population around a store.

    Age bins follow `AGE_BANDS` order for both genders.
    """

    total: float = 0.0
    male: float = 0.0
    female: float = 0.0
    male_age: tuple[float, ...] = _ZERO_BINS
    female_age: tuple[float, ...] = _ZERO_BINS


@dataclass(frozen=True)
class StoreRecord:
    id: str
    lat: float
    lon: float
    name: str = ""
    category: str = ""
    address: str = ""
    phone: str = ""
    rating: float = 0.0
    location_type: str = ""
    parking: str = ""
    store_size: str = ""
    expenditure_band: str = ""
    demographics: Demographics = field(default_factory=Demographics)

    def facet(self, name: str) -> str:
        return str(getattr(self, name, "") or "").strip()

    @classmethod
    def placeholder(
        cls, *, id: str, name: str, address: str, lat: float, lon: float
    ) -> "StoreRecord":
        # Used when a nearby lookup returns a store that is not in the catalog.
        return cls(
            id=id,
            lat=float(lat),
            lon=float(lon),
            name=name,
            category="Convenience store",
            address=address,
        )
