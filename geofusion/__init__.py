"""
geofusion - municipality feature fusion engine

This package fuses per-municipality datasets published with inconsistent code
formats into one feature table:
- Municipality code normalization and joins
- Boundary centroids
- Nearest-facility distances
- IDW interpolation of weather station readings
- A data integrity report over each load cycle

The main entry points are exposed at the package level:
    from geofusion import Config, FusionOrchestrator
"""

__version__ = "0.1.0"

from .config_loader import Config
from .errors import (
    FusionError,
    InvalidGeoCode,
    LoadFailure,
    MalformedGeometry,
    UnavailableResource,
)
from .integrity import IntegrityReport, run_integrity_checks
from .orchestrator import CancellationToken, FusionOrchestrator, FusionResult, fuse

__all__ = [
    "Config",
    "FusionOrchestrator",
    "FusionResult",
    "CancellationToken",
    "fuse",
    "IntegrityReport",
    "run_integrity_checks",
    "FusionError",
    "UnavailableResource",
    "MalformedGeometry",
    "InvalidGeoCode",
    "LoadFailure",
]
