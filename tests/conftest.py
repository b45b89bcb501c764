import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest
from loguru import logger

from geofusion.config_loader import Config


def square_ring(lon: float, lat: float, half: float = 0.5):
    """Closed square ring centered at (lon, lat), GeoJSON order."""
    return [
        [lon - half, lat - half],
        [lon + half, lat - half],
        [lon + half, lat + half],
        [lon - half, lat + half],
        [lon - half, lat - half],
    ]


def polygon_feature(code: str, name: str, lon: float, lat: float, half: float = 0.05) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "Polygon", "coordinates": [square_ring(lon, lat, half)]},
        "properties": {"codi": code, "nom": name, "comarca": ""},
    }


def point_feature(lon: float, lat: float, **properties) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": properties,
    }


def feature_collection(*features) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


BARCELONA = (2.17, 41.39)
GIRONA = (2.82, 41.98)
LLEIDA = (0.62, 41.62)


@pytest.fixture(autouse=True)
def reset_logger():
    """Keep loguru sinks from leaking between tests (the CLI replaces them)."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def raw_resources() -> Dict[str, Any]:
    """Resource key -> decoded JSON for three municipalities; schools left out on purpose."""
    return {
        "municipalities": feature_collection(
            polygon_feature("080193", "Barcelona", *BARCELONA),
            polygon_feature("170792", "Girona", *GIRONA),
            polygon_feature("251207", "Lleida", *LLEIDA),
            {"type": "Feature", "geometry": None, "properties": {"codi": "431480", "nom": "Broken"}},
        ),
        "terrain": [
            {"codi": "08019", "avgSlopeDeg": 4.2, "dominantAspect": "S", "avgElevationM": 55},
            {"codi": "25120", "avgSlopeDeg": 1.1, "dominantAspect": "N", "avgElevationM": 155},
        ],
        "votes": [
            {
                "codi": "0801900000",
                "nom": "Barcelona",
                "leftPct": 55.0,
                "rightPct": 30.0,
                "independencePct": 40.0,
                "unionistPct": 45.0,
                "turnoutPct": 61.5,
                "year": 2024,
                "partyPcts": {"ERC": 20.5, "PSC": 28.1},
            },
            {"codi": "1707900000", "nom": "Girona", "leftPct": 48.0, "year": 2024},
        ],
        "forest": [{"codi": "17079", "forestPct": 35.0, "agriculturalPct": 20.0, "urbanPct": 45.0}],
        "crime": [
            {"codi": "08019", "nom": "Barcelona", "totalOffenses": 180000, "ratePerThousand": 110.4, "year": 2023},
            {"codi": "123", "nom": "Short code", "ratePerThousand": 1.0},
        ],
        "rental_prices": [
            {"codi": "08019", "nom": "Barcelona", "avgEurMonth": 1150.0, "eurPerSqm": 16.2, "year": 2024, "quarter": 2}
        ],
        "employment": [
            {"codi": "08019", "nom": "Barcelona", "population": 1660000, "unemploymentPct": 8.1},
            {"codi": "25120", "nom": "Lleida", "population": 140000, "unemploymentPct": 9.3, "avgIncome": 27000},
        ],
        "air_quality": [
            {"codi": "08019", "stationId": "8019043", "stationName": "Eixample", "pm10": 25.0, "no2": 38.0}
        ],
        "internet": [{"codi": "17079", "fiberPct": 92.0, "adslPct": 99.0, "coverageScore": 0.9}],
        "transit": feature_collection(
            point_feature(2.18, 41.40, name="Passeig de Gracia", system="renfe"),
            point_feature(2.81, 41.98, name="Girona", system="renfe"),
            {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}, "properties": {}},
        ),
        "health": feature_collection(point_feature(2.16, 41.38, name="Hospital Clinic", type="hospital")),
        "amenities": feature_collection(),
        "climate_readings": [
            {"id": "BCN", "avgTemp": 16.5, "avgPrecip": 600.0},
            {"id": "GIR", "avgTemp": 14.8, "avgPrecip": 750.0},
            {"id": "LLE", "avgTemp": 15.2, "avgPrecip": None},
            {"id": "NOWHERE", "avgTemp": 3.0, "avgPrecip": 1200.0},
        ],
        "climate_stations": feature_collection(
            point_feature(2.15, 41.40, id="BCN", name="Barcelona - Raval"),
            point_feature(2.80, 41.95, id="GIR", name="Girona"),
            point_feature(0.60, 41.60, id="LLE", name="Lleida"),
        ),
    }


@pytest.fixture
def default_config() -> Config:
    return Config(data={})


@pytest.fixture
def resources_by_path(raw_resources, default_config) -> Dict[str, Any]:
    """Same resources keyed by their configured relative path (StaticResourceLoader input)."""
    return {default_config.get_resource_path(key): value for key, value in raw_resources.items()}


@pytest.fixture
def resources_dir(tmp_path, resources_by_path) -> Path:
    """Resources written to disk in the default directory layout."""
    root = tmp_path / "resources"
    for relative_path, value in resources_by_path.items():
        target = root / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(value), encoding="utf-8")
    return root
