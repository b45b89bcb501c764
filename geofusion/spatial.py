"""
Distance and interpolation on the sphere.

Raw haversine math on numpy arrays: every reference point is compared with the
whole facility or station set in one vectorized call. Linear scans are enough
for the expected scale (hundreds of municipalities, a few thousand points);
there is no spatial index.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .geometry import Point

EARTH_RADIUS_KM = 6371.0

DEFAULT_NEIGHBORS = 3
DEFAULT_POWER = 2.0


@dataclass
class StationSample:
    """One station's location and its measurements (e.g. avg_temp_c, avg_rainfall_mm)."""

    point: Point
    values: Dict[str, float] = field(default_factory=dict)
    station_id: Optional[str] = None


def haversine_km(lat1, lon1, lat2, lon2):
    """Great-circle distance in km between points given in degrees.

    Accepts scalars or numpy arrays (broadcast like any ufunc expression).
    """
    lat1, lon1, lat2, lon2 = (np.radians(v) for v in (lat1, lon1, lat2, lon2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def _coordinate_arrays(points: Sequence[Point]) -> Tuple[np.ndarray, np.ndarray]:
    lats = np.fromiter((p.lat for p in points), dtype=float, count=len(points))
    lons = np.fromiter((p.lon for p in points), dtype=float, count=len(points))
    return lats, lons


def nearest_distance_km(lat: float, lon: float, facilities: Sequence[Point]) -> Optional[float]:
    """Distance in km from (lat, lon) to the closest facility, None if there are none."""
    if not facilities:
        return None
    lats, lons = _coordinate_arrays(facilities)
    return float(np.min(haversine_km(lat, lon, lats, lons)))


def compute_distance_map(
    references: Mapping[str, Point], facilities: Sequence[Point]
) -> Dict[str, float]:
    """Distance to the nearest facility for every reference point.

    Args:
        references: Canonical code -> reference point (municipality centroid)
        facilities: Facility locations of one category

    Returns:
        Code -> km to the nearest facility. Empty when there are no
        facilities: a missing entry means "no known facility", not "far away".
    """
    result: Dict[str, float] = {}
    if not facilities:
        return result

    lats, lons = _coordinate_arrays(facilities)
    for code, ref in references.items():
        result[code] = float(np.min(haversine_km(ref.lat, ref.lon, lats, lons)))
    return result


def _check_idw_params(k: int, power: float) -> None:
    if k < 1:
        raise ValueError(f"IDW needs at least one neighbor, got k={k}")
    if power <= 0:
        raise ValueError(f"IDW power must be positive, got {power}")


def _idw_at(
    lat: float,
    lon: float,
    samples: Sequence[StationSample],
    lats: np.ndarray,
    lons: np.ndarray,
    k: int,
    power: float,
    coincidence_km: float,
) -> Dict[str, float]:
    distances = haversine_km(lat, lon, lats, lons)
    nearest = np.argsort(distances, kind="stable")[:k]

    # A station sitting on the query point wins outright
    first = nearest[0]
    if distances[first] <= coincidence_km:
        return dict(samples[first].values)

    weights = 1.0 / np.power(distances[nearest], power)
    weighted_sums: Dict[str, float] = defaultdict(float)
    weight_totals: Dict[str, float] = defaultdict(float)

    # Each measurement is normalized over the neighbors that actually carry it
    for idx, weight in zip(nearest, weights):
        for name, value in samples[idx].values.items():
            weighted_sums[name] += weight * value
            weight_totals[name] += weight

    return {name: float(weighted_sums[name] / weight_totals[name]) for name in weighted_sums}


def idw_interpolate(
    references: Mapping[str, Point],
    samples: Sequence[StationSample],
    k: int = DEFAULT_NEIGHBORS,
    power: float = DEFAULT_POWER,
    coincidence_km: float = 0.0,
) -> Dict[str, Dict[str, float]]:
    """Inverse-distance-weighted estimate at every reference point.

    For each reference the k nearest samples are used (all of them if there are
    fewer than k) with weight 1 / distance**power. A measurement missing from
    some of the selected samples is averaged over the ones that have it. A
    sample within ``coincidence_km`` of the reference returns its own values.

    Args:
        references: Canonical code -> reference point
        samples: Station samples
        k: Number of nearest samples to use
        power: Distance decay exponent
        coincidence_km: Distance at or below which a sample counts as coincident

    Returns:
        Code -> measurement name -> estimate. A reference whose selected
        samples carry no measurement gets no entry; empty when there are no
        samples.

    Raises:
        ValueError: If k < 1 or power <= 0
    """
    _check_idw_params(k, power)
    result: Dict[str, Dict[str, float]] = {}
    if not samples:
        return result

    lats, lons = _coordinate_arrays([s.point for s in samples])
    for code, ref in references.items():
        estimate = _idw_at(ref.lat, ref.lon, samples, lats, lons, k, power, coincidence_km)
        if estimate:
            result[code] = estimate
    return result


def idw_interpolate_point(
    lat: float,
    lon: float,
    samples: Sequence[StationSample],
    k: int = DEFAULT_NEIGHBORS,
    power: float = DEFAULT_POWER,
    coincidence_km: float = 0.0,
) -> Dict[str, float]:
    """Same as idw_interpolate() for a single query point; {} without samples."""
    _check_idw_params(k, power)
    if not samples:
        return {}
    lats, lons = _coordinate_arrays([s.point for s in samples])
    return _idw_at(lat, lon, samples, lats, lons, k, power, coincidence_km)


def nearest_samples(
    lat: float, lon: float, samples: Sequence[StationSample], k: int = DEFAULT_NEIGHBORS
) -> List[Tuple[StationSample, float]]:
    """The k samples closest to (lat, lon) with their distances, nearest first."""
    if not samples:
        return []
    lats, lons = _coordinate_arrays([s.point for s in samples])
    distances = haversine_km(lat, lon, lats, lons)
    order = np.argsort(distances, kind="stable")[:k]
    return [(samples[i], float(distances[i])) for i in order]
