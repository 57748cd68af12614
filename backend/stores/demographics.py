from __future__ import annotations

import math
from dataclasses import dataclass

from stores.types import AGE_BANDS, StoreRecord


@dataclass(frozen=True)
class GenderSplit:
    total: int
    male: int
    female: int
    male_pct: float
    female_pct: float


@dataclass(frozen=True)
class AgeDistribution:
    labels: tuple[str, ...]
    values: tuple[float, ...]
    percentages: tuple[float, ...]

    @property
    def total(self) -> float:
        return sum(self.values)


def has_demographics(record: StoreRecord) -> bool:
    return record.demographics.total > 0


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def _non_negative(v: float) -> float:
    return v if math.isfinite(v) and v > 0 else 0.0


def gender_split(record: StoreRecord) -> GenderSplit:
    """
    Male/female split scaled to the displayed population total.

    The displayed total is the catchment total when present, otherwise the sum of
    the gender totals. Female is derived from the rounded male count so the two
    always add up to the displayed total.
    """
    d = record.demographics
    male = _non_negative(d.male)
    female = _non_negative(d.female)
    gender_total = male + female
    total = _round_half_up(_non_negative(d.total) or gender_total)
    share = male / gender_total if gender_total > 0 else 0.0
    rounded_male = _round_half_up(share * total) if total > 0 else 0
    rounded_female = max(0, total - rounded_male)
    return GenderSplit(
        total=total,
        male=rounded_male,
        female=rounded_female,
        male_pct=(rounded_male / total * 100.0) if total > 0 else 0.0,
        female_pct=(rounded_female / total * 100.0) if total > 0 else 0.0,
    )


def age_distribution(values: tuple[float, ...]) -> AgeDistribution:
    clean = tuple(_non_negative(float(v)) for v in values)
    total = sum(clean)
    pct = tuple((v / total * 100.0) if total > 0 else 0.0 for v in clean)
    labels = tuple(band.replace("_", "-") for band in AGE_BANDS)
    return AgeDistribution(labels=labels, values=clean, percentages=pct)


def summarize(record: StoreRecord) -> dict:
    split = gender_split(record)
    male_age = age_distribution(record.demographics.male_age)
    female_age = age_distribution(record.demographics.female_age)
    return {
        "hasDemographics": has_demographics(record),
        "gender": {
            "total": split.total,
            "male": split.male,
            "female": split.female,
            "malePct": round(split.male_pct, 2),
            "femalePct": round(split.female_pct, 2),
        },
        "age": {
            "labels": list(male_age.labels),
            "male": list(male_age.values),
            "female": list(female_age.values),
            "malePct": [round(p, 2) for p in male_age.percentages],
            "femalePct": [round(p, 2) for p in female_age.percentages],
        },
    }
