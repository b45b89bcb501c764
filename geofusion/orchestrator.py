"""
Fusion Orchestrator

Turns the fifteen raw resources into one per-municipality feature table:

1. Index every flat record array by canonical municipality code
2. Compute municipality centroids from the boundary collection
3. Extract facility point sets (transit, health, schools, amenities)
4. Nearest-facility distance per category against the centroids
5. IDW climate interpolation from weather stations onto the centroids
6. Assemble MunicipalityData and the feature table

Fetching is a fan-out/fan-in on a thread pool; fusion runs synchronously once
every fetch has resolved. A resource that cannot be fetched degrades its own
category to empty; anything unexpected fails the whole cycle with LoadFailure.

Usage:
    from geofusion import Config, FusionOrchestrator
    from geofusion.repositories import FileResourceLoader

    orchestrator = FusionOrchestrator(FileResourceLoader("resources"), Config())
    result = orchestrator.load()
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from .config_loader import Config
from .errors import LoadFailure
from .geocodes import index_by_code, normalize
from .geometry import (
    Boundary,
    Point,
    build_centroids,
    extract_keyed_points,
    extract_points,
    parse_boundary_collection,
)
from .records import (
    AirQualityReading,
    ClimateStats,
    CrimeRate,
    EmploymentData,
    FeatureRecord,
    ForestCover,
    InternetCoverage,
    MunicipalityData,
    RawClimateStation,
    RentalPrice,
    TerrainStats,
    VoteSentiment,
    parse_records,
)
from .repositories import ResourceLoader
from .spatial import StationSample, compute_distance_map, idw_interpolate

RESOURCE_KEYS = (
    "municipalities",
    "terrain",
    "votes",
    "forest",
    "crime",
    "rental_prices",
    "employment",
    "air_quality",
    "internet",
    "transit",
    "health",
    "schools",
    "amenities",
    "climate_readings",
    "climate_stations",
)

# resource key -> record type; the MunicipalityData field has the same name
RECORD_RESOURCES = {
    "terrain": TerrainStats,
    "votes": VoteSentiment,
    "forest": ForestCover,
    "crime": CrimeRate,
    "rental_prices": RentalPrice,
    "employment": EmploymentData,
    "air_quality": AirQualityReading,
    "internet": InternetCoverage,
}

# facility resource key -> MunicipalityData distance field
FACILITY_RESOURCES = {
    "transit": "transit_dist_km",
    "health": "healthcare_dist_km",
    "schools": "school_dist_km",
    "amenities": "amenity_dist_km",
}

TEMPERATURE = "avg_temp_c"
RAINFALL = "avg_rainfall_mm"


@dataclass
class FusionSettings:
    """Tunables for one fusion run."""

    neighbors: int = 3
    power: float = 2.0
    coincidence_km: float = 0.0
    boundary_code: str = "codi"
    boundary_name: str = "nom"
    station_id: str = "id"

    @classmethod
    def from_config(cls, config: Config) -> "FusionSettings":
        return cls(
            neighbors=int(config.get("interpolation.neighbors", 3)),
            power=float(config.get("interpolation.power", 2.0)),
            coincidence_km=float(config.get("interpolation.coincidence_km", 0.0)),
            boundary_code=config.get("properties.boundary_code", "codi"),
            boundary_name=config.get("properties.boundary_name", "nom"),
            station_id=config.get("properties.station_id", "id"),
        )


@dataclass
class FusionResult:
    """Everything one load cycle hands to the scoring consumer."""

    municipality_data: MunicipalityData
    feature_table: Dict[str, FeatureRecord]
    centroids: Dict[str, Point]
    boundaries: List[Boundary] = field(default_factory=list)
    facility_points: Dict[str, List[Point]] = field(default_factory=dict)
    climate_stations: List[StationSample] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)


class CancellationToken:
    """Set by the consumer when it no longer wants the result of a load cycle."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def build_station_samples(
    readings: Optional[List[RawClimateStation]], positions: Mapping[str, Point]
) -> List[StationSample]:
    """Join station readings with station positions by station id.

    Readings without a known position, and readings carrying no numeric
    measurement at all, are dropped.
    """
    samples: List[StationSample] = []
    if not readings or not positions:
        return samples

    unmatched = 0
    for reading in readings:
        point = positions.get(reading.id) if reading.id is not None else None
        if point is None:
            unmatched += 1
            continue
        values = {}
        if reading.avg_temp is not None:
            values[TEMPERATURE] = reading.avg_temp
        if reading.avg_precip is not None:
            values[RAINFALL] = reading.avg_precip
        if values:
            samples.append(StationSample(point=point, values=values, station_id=reading.id))

    if unmatched:
        logger.debug(f"  {unmatched} climate reading(s) without a station position")
    return samples


def interpolate_climate(
    centroids: Mapping[str, Point], samples: List[StationSample], settings: FusionSettings
) -> Dict[str, ClimateStats]:
    """IDW climate per municipality centroid."""
    if not samples:
        return {}

    interpolated = idw_interpolate(
        centroids,
        samples,
        k=settings.neighbors,
        power=settings.power,
        coincidence_km=settings.coincidence_km,
    )
    return {
        code: ClimateStats(
            code=code,
            avg_temp_c=values.get(TEMPERATURE),
            avg_rainfall_mm=values.get(RAINFALL),
        )
        for code, values in interpolated.items()
    }


def assemble_feature_table(
    data: MunicipalityData, boundaries: Optional[List[Boundary]] = None
) -> Dict[str, FeatureRecord]:
    """One FeatureRecord per code present in any category.

    A category without an entry for a code leaves that field as None.
    """
    names: Dict[str, str] = {}
    for boundary in boundaries or []:
        if boundary.name and len(boundary.code) >= 5:
            names[normalize(boundary.code)] = boundary.name

    categories = data.categories()
    table: Dict[str, FeatureRecord] = {}
    for code in data.codes():
        record = FeatureRecord(code=code, name=names.get(code))
        for category, mapping in categories.items():
            value = mapping.get(code)
            setattr(record, category, value)
            if record.name is None and getattr(value, "name", None):
                record.name = value.name
        table[code] = record
    return table


def fuse(resources: Mapping[str, Any], settings: Optional[FusionSettings] = None) -> FusionResult:
    """Fuse already-fetched resources into a FusionResult.

    Args:
        resources: Resource key -> decoded JSON, or None when unavailable
        settings: Interpolation and property-name settings

    Returns:
        Fresh FusionResult; no input object is mutated
    """
    settings = settings or FusionSettings()
    unavailable = [key for key in RESOURCE_KEYS if resources.get(key) is None]
    if unavailable:
        logger.warning(f"⚠️ Unavailable resources fused as empty: {', '.join(unavailable)}")

    # 1. Code-indexed joins
    logger.info("🔗 Indexing municipality datasets by INE code...")
    data = MunicipalityData()
    for key, record_type in RECORD_RESOURCES.items():
        records = parse_records(resources.get(key), record_type, key)
        setattr(data, key, index_by_code(records, label=key))
        logger.debug(f"  {key}: {len(getattr(data, key)):,} municipalities")

    # 2. Centroids
    logger.info("📍 Computing municipality centroids...")
    boundaries = parse_boundary_collection(
        resources.get("municipalities"),
        code_property=settings.boundary_code,
        name_property=settings.boundary_name,
    )
    centroids = build_centroids(boundaries)
    logger.info(f"  📊 {len(centroids):,} centroids")

    # 3 + 4. Facility points and nearest-facility distances
    logger.info("🚉 Computing nearest-facility distances...")
    facility_points: Dict[str, List[Point]] = {}
    for key, distance_field in FACILITY_RESOURCES.items():
        points = extract_points(resources.get(key), label=key)
        facility_points[key] = points
        setattr(data, distance_field, compute_distance_map(centroids, points))
        logger.debug(f"  {key}: {len(points):,} facilities")

    # 5. Climate
    logger.info("🌦️ Interpolating climate from weather stations...")
    readings = parse_records(resources.get("climate_readings"), RawClimateStation, "climate_readings")
    positions = extract_keyed_points(
        resources.get("climate_stations"), key_property=settings.station_id, label="climate_stations"
    )
    climate_stations = build_station_samples(readings, positions)
    data.climate = interpolate_climate(centroids, climate_stations, settings)
    logger.info(f"  📊 {len(climate_stations):,} stations -> {len(data.climate):,} municipalities")

    # 6. Feature table
    feature_table = assemble_feature_table(data, boundaries)
    logger.success(f"✅ Feature table assembled: {len(feature_table):,} municipalities")

    return FusionResult(
        municipality_data=data,
        feature_table=feature_table,
        centroids=centroids,
        boundaries=boundaries,
        facility_points=facility_points,
        climate_stations=climate_stations,
        unavailable=unavailable,
    )


class FusionOrchestrator:
    """
    Runs load cycles: concurrent fetch of every resource, then fuse().

    The resource loader is injected, so tests can run against fixed fixtures
    and production against a directory or an HTTP resource store.
    """

    def __init__(self, loader: ResourceLoader, config: Optional[Config] = None, max_workers: Optional[int] = None):
        """Initialize the orchestrator.

        Args:
            loader: Resource loader used for every fetch
            config: Configuration (packaged defaults if None)
            max_workers: Fetch thread count (config ``loader.max_workers`` if None)
        """
        self.loader = loader
        self.config = config or Config(data={})
        self.settings = FusionSettings.from_config(self.config)
        self.max_workers = max_workers or int(self.config.get("loader.max_workers", 15))

    def fetch_all(self) -> Dict[str, Any]:
        """Fetch every resource concurrently and wait for all of them.

        Returns:
            Resource key -> decoded JSON, None where unavailable

        Raises:
            LoadFailure: If any fetch raised instead of resolving to None
        """
        paths = {key: self.config.get_resource_path(key) for key in RESOURCE_KEYS}
        logger.info(f"📥 Fetching {len(paths)} resources from {self.loader.describe()}")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {key: executor.submit(self.loader.fetch_json, path) for key, path in paths.items()}

            resources: Dict[str, Any] = {}
            failure: Optional[BaseException] = None
            for key, future in futures.items():
                try:
                    resources[key] = future.result()
                except Exception as e:
                    logger.error(f"❌ Fetching {key} raised {type(e).__name__}: {e}")
                    failure = failure or e

        if failure is not None:
            raise LoadFailure(f"Resource fetch failed: {failure}") from failure

        available = sum(1 for value in resources.values() if value is not None)
        logger.info(f"  📊 {available}/{len(resources)} resources available")
        return resources

    def load(self, token: Optional[CancellationToken] = None) -> Optional[FusionResult]:
        """Run one load cycle.

        Args:
            token: Cancellation token checked once, right before the result is returned

        Returns:
            The fused result, or None if the cycle was cancelled

        Raises:
            LoadFailure: On any unexpected error; partial results are never returned
        """
        start = time.time()
        try:
            resources = self.fetch_all()
            result = fuse(resources, self.settings)
        except LoadFailure:
            raise
        except Exception as e:
            raise LoadFailure(f"Fusion failed: {type(e).__name__}: {e}") from e

        if token is not None and token.cancelled:
            logger.info("🛑 Load cycle cancelled; discarding results")
            return None

        logger.success(f"✅ Load cycle completed in {time.time() - start:.1f}s")
        return result
