"""
Configuration Loader for the geofusion engine

Centralized access to the settings in config.yaml: resource paths, loader
settings and interpolation parameters. Anything missing from the file falls
back to Config.DEFAULTS.

Usage:
    from geofusion.config_loader import Config

    config = Config()
    path = config.get_resource_path('municipalities')
    k = config.get('interpolation.neighbors')
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

PACKAGED_CONFIG = Path(__file__).parent / "config.yaml"


class Config:
    """Configuration manager for the fusion engine."""

    DEFAULTS: Dict[str, Any] = {
        "resources": {
            "municipalities": "geo/municipis.geojson",
            "terrain": "terrain/municipality_terrain_stats.json",
            "votes": "votes/municipal_sentiment.json",
            "forest": "vegetation/forest_cover.json",
            "crime": "crime/crime_by_municipality.json",
            "rental_prices": "economy/rental_prices.json",
            "employment": "economy/employment.json",
            "air_quality": "air/stations.json",
            "internet": "internet/coverage.json",
            "transit": "transit/all_stations.geojson",
            "health": "health/facilities.geojson",
            "schools": "education/schools.geojson",
            "amenities": "amenities/facilities.geojson",
            "climate_readings": "climate/station_climate.json",
            "climate_stations": "climate/stations.geojson",
        },
        "loader": {
            "resources_dir": "resources",
            "base_url": None,
            "timeout_seconds": 30,
            "max_workers": 15,
        },
        "interpolation": {
            "neighbors": 3,
            "power": 2.0,
            "coincidence_km": 0.0,
        },
        "integrity": {
            "required_coverage_pct": 90.0,
            "max_blank_pct_per_layer": 15.0,
            "max_outlier_z_score": 4.0,
            "duplicate_coord_decimals": 5,
            "stale_year_threshold": 6,
        },
        "properties": {
            "boundary_code": "codi",
            "boundary_name": "nom",
            "station_id": "id",
        },
    }

    def __init__(self, config_file: Optional[Union[str, Path]] = None, data: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable GEOFUSION_CONFIG_PATH
                        2. config.yaml in current directory
                        3. the config.yaml shipped with the package
            data: Settings to use directly instead of reading a file
        """
        if data is not None:
            self.config_path: Optional[Path] = None
            loaded = data
        else:
            if config_file is None:
                env_config = os.environ.get("GEOFUSION_CONFIG_PATH")
                if env_config and Path(env_config).exists():
                    config_file = env_config
                    logger.debug(f"Using config from environment: {config_file}")
                elif Path("config.yaml").exists():
                    config_file = "config.yaml"
                else:
                    config_file = PACKAGED_CONFIG
                    logger.debug("Using packaged default config.yaml")

            self.config_path = Path(config_file).resolve()
            if not self.config_path.exists():
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

            logger.debug(f"Loading config from: {self.config_path}")
            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}

        if not isinstance(loaded, dict):
            raise ValueError("Configuration root must be a mapping")

        self.data = copy.deepcopy(self.DEFAULTS)
        self._apply_nested_override(self.data, loaded)

    def _apply_nested_override(self, base_dict: Dict, override_dict: Dict) -> None:
        """Apply nested overrides."""
        for key, value in override_dict.items():
            if isinstance(value, dict) and key in base_dict and isinstance(base_dict[key], dict):
                self._apply_nested_override(base_dict[key], value)
            else:
                base_dict[key] = value

    def set(self, key_path: str, value: Any) -> None:
        """Set a value using dot notation (used for CLI overrides)."""
        keys = key_path.split(".")
        current = self.data
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value
        logger.debug(f"Config override: {key_path} = {value}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value: Any = self.data
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_resource_path(self, resource_key: str) -> str:
        """Relative path of a resource, as handed to the resource loader."""
        path = self.data.get("resources", {}).get(resource_key)
        if not path:
            raise ValueError(f"Resource '{resource_key}' not found in config: resources")
        return str(path)

    def get_resources_dir(self) -> Path:
        """Local resource directory.

        Relative paths resolve against the config file's directory, or against
        the working directory for the packaged defaults.
        """
        resources_dir = Path(self.get("loader.resources_dir", "resources"))
        if resources_dir.is_absolute():
            return resources_dir
        if self.config_path is None or self.config_path == PACKAGED_CONFIG.resolve():
            return Path.cwd() / resources_dir
        return self.config_path.parent / resources_dir

    @property
    def resource_keys(self):
        return list(self.data.get("resources", {}).keys())
