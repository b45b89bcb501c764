"""
Geometry primitives: points, municipality boundaries and centroids.

All coordinates are unprojected WGS84 degrees. GeoJSON positions are
[lon, lat]; Point stores them as (lat, lon) fields to keep call sites explicit.

Centroids are vertex averages: the mean longitude and mean latitude of every
exterior-ring vertex of every polygon of a boundary, the closing vertex
included. This is not the area-weighted centroid. It leans toward the
vertex-dense parts of a shape, which is acceptable for nearest-facility and
interpolation lookups at municipality scale. Switching to an area-weighted
formula changes every derived distance and climate value.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry import Point as ShapelyPoint

from .errors import InvalidGeoCode, MalformedGeometry
from .geocodes import normalize

Position = Tuple[float, float]  # (lon, lat), GeoJSON order
Ring = List[Position]


@dataclass(frozen=True)
class Point:
    """A WGS84 location in decimal degrees."""

    lat: float
    lon: float

    def __post_init__(self):
        for name, value, limit in (("lat", self.lat, 90.0), ("lon", self.lon, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedGeometry(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise MalformedGeometry(f"{name} is not finite: {value!r}")
            if abs(value) > limit:
                raise MalformedGeometry(f"{name} out of range: {value!r}")

    @classmethod
    def from_position(cls, position: Any) -> "Point":
        """Build a Point from a GeoJSON [lon, lat] position."""
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            raise MalformedGeometry(f"Invalid GeoJSON position: {position!r}")
        return cls(lat=position[1], lon=position[0])


@dataclass
class Boundary:
    """One municipality's shape: polygons made of rings (exterior first, then holes)."""

    code: str
    polygons: List[List[Ring]]
    name: Optional[str] = None
    _shape: Optional[MultiPolygon] = field(default=None, init=False, repr=False, compare=False)

    def exterior_vertices(self) -> List[Position]:
        vertices: List[Position] = []
        for polygon in self.polygons:
            if polygon:
                vertices.extend(polygon[0])
        return vertices

    def to_shape(self) -> MultiPolygon:
        """Shapely MultiPolygon for this boundary (built once, then cached)."""
        if self._shape is None:
            try:
                parts = [Polygon(rings[0], rings[1:]) for rings in self.polygons if rings]
                self._shape = MultiPolygon(parts)
            except (ValueError, TypeError, GEOSException) as e:
                raise MalformedGeometry(f"Boundary {self.code} is not a valid polygon: {e}") from e
        return self._shape

    def contains(self, point: Point) -> bool:
        """True if the point lies inside the boundary or on its edge (holes excluded)."""
        return self.to_shape().covers(ShapelyPoint(point.lon, point.lat))


def centroid(boundary: Boundary) -> Point:
    """Vertex-average centroid of a boundary.

    A multi-polygon yields one point for the whole municipality, not one per
    part.

    Args:
        boundary: Municipality boundary

    Returns:
        Mean of all exterior-ring vertices

    Raises:
        MalformedGeometry: If the boundary has no vertices
    """
    vertices = boundary.exterior_vertices()
    if not vertices:
        raise MalformedGeometry(f"Boundary {boundary.code} has no vertices")

    sum_lon = sum(lon for lon, _ in vertices)
    sum_lat = sum(lat for _, lat in vertices)
    count = len(vertices)
    return Point(lat=sum_lat / count, lon=sum_lon / count)


def build_centroids(boundaries: Iterable[Boundary]) -> Dict[str, Point]:
    """Centroid per municipality, keyed by canonical code.

    Boundaries whose code or geometry is unusable are skipped.
    """
    centroids: Dict[str, Point] = {}
    for boundary in boundaries:
        try:
            centroids[normalize(boundary.code)] = centroid(boundary)
        except (MalformedGeometry, InvalidGeoCode) as e:
            logger.warning(f"  ⚠️ Skipping boundary: {e}")
    return centroids


def _parse_ring(raw_ring: Any) -> Ring:
    if not isinstance(raw_ring, (list, tuple)):
        raise MalformedGeometry(f"Ring must be a list of positions, got {type(raw_ring).__name__}")
    ring: Ring = []
    for position in raw_ring:
        point = Point.from_position(position)
        ring.append((float(point.lon), float(point.lat)))
    return ring


def _parse_polygon(raw_polygon: Any) -> List[Ring]:
    if not isinstance(raw_polygon, (list, tuple)):
        raise MalformedGeometry("Polygon must be a list of rings")
    return [_parse_ring(raw_ring) for raw_ring in raw_polygon]


def parse_geometry(geometry: Any) -> List[List[Ring]]:
    """Polygon or MultiPolygon GeoJSON geometry -> list of polygons."""
    if not isinstance(geometry, dict):
        raise MalformedGeometry("Feature has no geometry")

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if geom_type == "Polygon":
        return [_parse_polygon(coordinates)]
    if geom_type == "MultiPolygon":
        if not isinstance(coordinates, (list, tuple)):
            raise MalformedGeometry("MultiPolygon coordinates must be a list")
        return [_parse_polygon(polygon) for polygon in coordinates]

    raise MalformedGeometry(f"Unsupported boundary geometry type: {geom_type!r}")


def _features(collection: Any, label: str) -> Sequence[Any]:
    if collection is None:
        return []
    features = collection.get("features") if isinstance(collection, dict) else None
    if not isinstance(features, list):
        logger.error(f"❌ {label}: not a GeoJSON FeatureCollection")
        return []
    return features


def parse_boundary_collection(
    collection: Any, code_property: str = "codi", name_property: str = "nom"
) -> List[Boundary]:
    """Municipality boundaries from a GeoJSON FeatureCollection.

    Features without a string code or without valid Polygon/MultiPolygon
    coordinates are skipped; the rest of the collection is kept.

    Args:
        collection: Decoded GeoJSON, or None when unavailable
        code_property: Property holding the raw municipality code
        name_property: Property holding the municipality name

    Returns:
        Parsed boundaries in collection order
    """
    boundaries: List[Boundary] = []
    skipped = 0

    for feature in _features(collection, "municipalities"):
        properties = (feature.get("properties") if isinstance(feature, dict) else None) or {}
        code = properties.get(code_property)
        if not isinstance(code, str):
            skipped += 1
            logger.debug(f"  Boundary feature without a code: {properties}")
            continue
        try:
            polygons = parse_geometry(feature.get("geometry"))
        except MalformedGeometry as e:
            skipped += 1
            logger.debug(f"  Malformed boundary {code}: {e}")
            continue
        name = properties.get(name_property)
        boundaries.append(Boundary(code=code, polygons=polygons, name=name if isinstance(name, str) else None))

    if skipped:
        logger.warning(f"  ⚠️ Skipped {skipped} malformed boundary feature(s)")
    logger.debug(f"  Parsed {len(boundaries):,} municipality boundaries")
    return boundaries


def _point_feature(feature: Any) -> Point:
    geometry = feature.get("geometry") if isinstance(feature, dict) else None
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        raise MalformedGeometry("Feature is not a Point")
    return Point.from_position(geometry.get("coordinates"))


def extract_points(collection: Any, label: str = "points") -> List[Point]:
    """Point locations from a GeoJSON FeatureCollection.

    Coordinates are read from the geometry rather than from lat/lon properties.
    Non-Point features and invalid coordinates are skipped.
    """
    points: List[Point] = []
    skipped = 0
    for feature in _features(collection, label):
        try:
            points.append(_point_feature(feature))
        except MalformedGeometry:
            skipped += 1

    if skipped:
        logger.warning(f"  ⚠️ {label}: skipped {skipped} feature(s) without valid point coordinates")
    return points


def extract_keyed_points(collection: Any, key_property: str = "id", label: str = "points") -> Dict[str, Point]:
    """Point locations keyed by a feature property (e.g. weather station id)."""
    keyed: Dict[str, Point] = {}
    skipped = 0
    for feature in _features(collection, label):
        properties = (feature.get("properties") if isinstance(feature, dict) else None) or {}
        key = properties.get(key_property)
        if key is None or key == "":
            skipped += 1
            continue
        try:
            keyed[str(key)] = _point_feature(feature)
        except MalformedGeometry:
            skipped += 1

    if skipped:
        logger.warning(f"  ⚠️ {label}: skipped {skipped} feature(s) without id or valid coordinates")
    return keyed
