"""
Raw feature values at an arbitrary map location.

Distance features are measured from the point itself rather than from its
municipality's centroid, climate is interpolated directly at the point, and
everything else comes from the municipality that contains the point.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from .errors import InvalidGeoCode, MalformedGeometry
from .geocodes import normalize
from .geometry import Boundary, Point
from .orchestrator import FACILITY_RESOURCES, RAINFALL, TEMPERATURE, FusionResult, FusionSettings
from .records import FeatureRecord
from .spatial import idw_interpolate_point, nearest_distance_km, nearest_samples


@dataclass
class PointAnalysis:
    point: Point
    municipality_code: Optional[str] = None
    municipality_name: Optional[str] = None
    features: Optional[FeatureRecord] = None
    distances_km: Dict[str, float] = field(default_factory=dict)
    climate: Dict[str, float] = field(default_factory=dict)
    nearest_stations: List[Dict[str, object]] = field(default_factory=list)


def find_municipality(point: Point, boundaries: List[Boundary]) -> Optional[Boundary]:
    """First boundary containing the point, None if it lies outside all of them."""
    for boundary in boundaries:
        try:
            if boundary.contains(point):
                return boundary
        except MalformedGeometry as e:
            logger.debug(f"  Skipping boundary in point lookup: {e}")
    return None


def analyze_point(result: FusionResult, point: Point, settings: Optional[FusionSettings] = None) -> PointAnalysis:
    """Collect the raw values at ``point`` from a finished load cycle.

    Args:
        result: Output of a load cycle
        point: Query location
        settings: Interpolation settings (defaults if None)

    Returns:
        PointAnalysis; categories without data are simply absent
    """
    settings = settings or FusionSettings()
    analysis = PointAnalysis(point=point)

    boundary = find_municipality(point, result.boundaries)
    if boundary is not None:
        try:
            code = normalize(boundary.code)
        except InvalidGeoCode:
            code = None
        if code is not None:
            analysis.municipality_code = code
            analysis.municipality_name = boundary.name
            analysis.features = result.feature_table.get(code)
    else:
        logger.info(f"📍 ({point.lat:.5f}, {point.lon:.5f}) is outside every municipality")

    for category, distance_field in FACILITY_RESOURCES.items():
        distance = nearest_distance_km(point.lat, point.lon, result.facility_points.get(category, []))
        if distance is not None:
            analysis.distances_km[distance_field] = distance

    analysis.climate = idw_interpolate_point(
        point.lat,
        point.lon,
        result.climate_stations,
        k=settings.neighbors,
        power=settings.power,
        coincidence_km=settings.coincidence_km,
    )
    for sample, distance in nearest_samples(point.lat, point.lon, result.climate_stations, settings.neighbors):
        analysis.nearest_stations.append(
            {
                "station_id": sample.station_id,
                "distance_km": distance,
                TEMPERATURE: sample.values.get(TEMPERATURE),
                RAINFALL: sample.values.get(RAINFALL),
            }
        )

    return analysis
