"""
Record types for the per-municipality datasets.

The acquisition scripts publish loosely shaped camelCase JSON where any field
may be missing. Each dataset gets an explicit dataclass here; a missing or
non-numeric field is carried as None so that "unknown" never reads as zero.
"""

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar

from loguru import logger

T = TypeVar("T")


def _opt_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    # NaN and infinities read as "no value"
    return number if math.isfinite(number) else None


def _opt_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = _opt_float(data, key)
    return int(value) if value is not None else None


def _opt_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


@dataclass
class TerrainStats:
    code: Optional[str]
    avg_slope_deg: Optional[float] = None
    dominant_aspect: Optional[str] = None
    avg_elevation_m: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerrainStats":
        return cls(
            code=_opt_str(data, "codi"),
            avg_slope_deg=_opt_float(data, "avgSlopeDeg"),
            dominant_aspect=_opt_str(data, "dominantAspect"),
            avg_elevation_m=_opt_float(data, "avgElevationM"),
        )


@dataclass
class VoteSentiment:
    """Vote shares aggregated per municipality (codes arrive with 10 characters)."""

    code: Optional[str]
    name: Optional[str] = None
    left_pct: Optional[float] = None
    right_pct: Optional[float] = None
    independence_pct: Optional[float] = None
    unionist_pct: Optional[float] = None
    turnout_pct: Optional[float] = None
    year: Optional[int] = None
    party_pcts: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoteSentiment":
        raw_parties = data.get("partyPcts")
        party_pcts = {}
        if isinstance(raw_parties, dict):
            for party in raw_parties:
                pct = _opt_float(raw_parties, party)
                if pct is not None:
                    party_pcts[str(party)] = pct
        return cls(
            code=_opt_str(data, "codi"),
            name=_opt_str(data, "nom"),
            left_pct=_opt_float(data, "leftPct"),
            right_pct=_opt_float(data, "rightPct"),
            independence_pct=_opt_float(data, "independencePct"),
            unionist_pct=_opt_float(data, "unionistPct"),
            turnout_pct=_opt_float(data, "turnoutPct"),
            year=_opt_int(data, "year"),
            party_pcts=party_pcts,
        )


@dataclass
class ForestCover:
    code: Optional[str]
    forest_pct: Optional[float] = None
    agricultural_pct: Optional[float] = None
    urban_pct: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForestCover":
        return cls(
            code=_opt_str(data, "codi"),
            forest_pct=_opt_float(data, "forestPct"),
            agricultural_pct=_opt_float(data, "agriculturalPct"),
            urban_pct=_opt_float(data, "urbanPct"),
        )


@dataclass
class CrimeRate:
    code: Optional[str]
    name: Optional[str] = None
    total_offenses: Optional[int] = None
    rate_per_thousand: Optional[float] = None
    year: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrimeRate":
        return cls(
            code=_opt_str(data, "codi"),
            name=_opt_str(data, "nom"),
            total_offenses=_opt_int(data, "totalOffenses"),
            rate_per_thousand=_opt_float(data, "ratePerThousand"),
            year=_opt_int(data, "year"),
        )


@dataclass
class RentalPrice:
    code: Optional[str]
    name: Optional[str] = None
    avg_eur_month: Optional[float] = None
    eur_per_sqm: Optional[float] = None
    year: Optional[int] = None
    quarter: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RentalPrice":
        return cls(
            code=_opt_str(data, "codi"),
            name=_opt_str(data, "nom"),
            avg_eur_month=_opt_float(data, "avgEurMonth"),
            eur_per_sqm=_opt_float(data, "eurPerSqm"),
            year=_opt_int(data, "year"),
            quarter=_opt_int(data, "quarter"),
        )


@dataclass
class EmploymentData:
    code: Optional[str]
    name: Optional[str] = None
    population: Optional[int] = None
    unemployment_pct: Optional[float] = None
    avg_income: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmploymentData":
        return cls(
            code=_opt_str(data, "codi"),
            name=_opt_str(data, "nom"),
            population=_opt_int(data, "population"),
            unemployment_pct=_opt_float(data, "unemploymentPct"),
            avg_income=_opt_float(data, "avgIncome"),
        )


@dataclass
class AirQualityReading:
    """Air quality station reading; ``code`` is the station's municipality."""

    code: Optional[str]
    station_id: Optional[str] = None
    station_name: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    municipality: Optional[str] = None
    no2: Optional[float] = None
    pm10: Optional[float] = None
    pm25: Optional[float] = None
    o3: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AirQualityReading":
        return cls(
            code=_opt_str(data, "codi"),
            station_id=_opt_str(data, "stationId"),
            station_name=_opt_str(data, "stationName"),
            lat=_opt_float(data, "lat"),
            lon=_opt_float(data, "lon"),
            municipality=_opt_str(data, "municipi"),
            no2=_opt_float(data, "no2"),
            pm10=_opt_float(data, "pm10"),
            pm25=_opt_float(data, "pm25"),
            o3=_opt_float(data, "o3"),
        )


@dataclass
class InternetCoverage:
    code: Optional[str]
    fiber_pct: Optional[float] = None
    adsl_pct: Optional[float] = None
    coverage_score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InternetCoverage":
        return cls(
            code=_opt_str(data, "codi"),
            fiber_pct=_opt_float(data, "fiberPct"),
            adsl_pct=_opt_float(data, "adslPct"),
            coverage_score=_opt_float(data, "coverageScore"),
        )


@dataclass
class RawClimateStation:
    """Yearly averages for one weather station, keyed by station id."""

    id: Optional[str]
    avg_temp: Optional[float] = None
    avg_precip: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawClimateStation":
        raw_id = data.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            avg_temp=_opt_float(data, "avgTemp"),
            avg_precip=_opt_float(data, "avgPrecip"),
        )


@dataclass
class ClimateStats:
    """Climate interpolated at a municipality centroid."""

    code: str
    avg_temp_c: Optional[float] = None
    avg_rainfall_mm: Optional[float] = None


@dataclass
class MunicipalityData:
    """Per-category mappings keyed by canonical code; every category defaults to empty."""

    terrain: Dict[str, TerrainStats] = field(default_factory=dict)
    votes: Dict[str, VoteSentiment] = field(default_factory=dict)
    forest: Dict[str, ForestCover] = field(default_factory=dict)
    crime: Dict[str, CrimeRate] = field(default_factory=dict)
    rental_prices: Dict[str, RentalPrice] = field(default_factory=dict)
    employment: Dict[str, EmploymentData] = field(default_factory=dict)
    climate: Dict[str, ClimateStats] = field(default_factory=dict)
    air_quality: Dict[str, AirQualityReading] = field(default_factory=dict)
    internet: Dict[str, InternetCoverage] = field(default_factory=dict)
    transit_dist_km: Dict[str, float] = field(default_factory=dict)
    healthcare_dist_km: Dict[str, float] = field(default_factory=dict)
    school_dist_km: Dict[str, float] = field(default_factory=dict)
    amenity_dist_km: Dict[str, float] = field(default_factory=dict)

    def categories(self) -> Dict[str, Dict[str, Any]]:
        """Category name -> mapping, in declaration order."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def codes(self) -> List[str]:
        """Sorted union of every code present in any category."""
        all_codes = set()
        for mapping in self.categories().values():
            all_codes.update(mapping.keys())
        return sorted(all_codes)


@dataclass
class FeatureRecord:
    """Everything known about one municipality. None means the source had no entry."""

    code: str
    name: Optional[str] = None
    terrain: Optional[TerrainStats] = None
    votes: Optional[VoteSentiment] = None
    forest: Optional[ForestCover] = None
    crime: Optional[CrimeRate] = None
    rental_prices: Optional[RentalPrice] = None
    employment: Optional[EmploymentData] = None
    climate: Optional[ClimateStats] = None
    air_quality: Optional[AirQualityReading] = None
    internet: Optional[InternetCoverage] = None
    transit_dist_km: Optional[float] = None
    healthcare_dist_km: Optional[float] = None
    school_dist_km: Optional[float] = None
    amenity_dist_km: Optional[float] = None


def parse_records(raw: Any, record_type: Type[T], label: str) -> Optional[List[T]]:
    """Parse a JSON array into record dataclasses.

    Args:
        raw: Decoded JSON (expected: list of objects), or None when unavailable
        record_type: Dataclass with a ``from_dict`` constructor
        label: Dataset name used in log messages

    Returns:
        List of records, or None if the resource is unavailable or not an array
    """
    if raw is None:
        return None
    if not isinstance(raw, list):
        logger.error(f"❌ {label}: expected a JSON array, got {type(raw).__name__}")
        return None

    records = [record_type.from_dict(item) for item in raw if isinstance(item, dict)]
    dropped = len(raw) - len(records)
    if dropped:
        logger.warning(f"  ⚠️ {label}: ignored {dropped} non-object entries")

    logger.debug(f"  Parsed {len(records):,} {label} records")
    return records
