"""
Geo Fence

Decides whether a place lies inside the crawl region.

The region is a GeoJSON geometry (or a Feature wrapping one), coordinates in
[lng, lat] order:
- Point: circle of radiusKm (default 5 km) around it
- LineString: circle around the midpoint of its first and last point, with the
  total line length as radius
- Polygon: exact containment, holes respected
- MultiPolygon: inside any part

The test is fail-open: a missing region, missing coordinates or a malformed
geometry all count as inside, so places are never dropped just because the
feed did not give us enough to check them.
"""

import math
from typing import Any, Dict, List, Optional, Sequence

from shapely.geometry import Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from ..config import DEFAULT_POINT_RADIUS_KM, EARTH_RADIUS_KM, CIRCLE_STEPS
from ..logging_config import get_logger
from ..models import Coordinates

logger = get_logger(__name__)

POINT = 'Point'
LINE_STRING = 'LineString'
POLYGON = 'Polygon'
MULTI_POLYGON = 'MultiPolygon'
FEATURE = 'Feature'


# =============================================================================
# Geodesy helpers (spherical earth)
# =============================================================================

def haversine_km(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance between two points in kilometers"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def destination(lng: float, lat: float, distance_km: float, bearing_deg: float) -> List[float]:
    """Point reached by travelling distance_km from (lng, lat) on a bearing"""
    phi1 = math.radians(lat)
    lambda1 = math.radians(lng)
    bearing = math.radians(bearing_deg)
    angular = distance_km / EARTH_RADIUS_KM

    phi2 = math.asin(
        math.sin(phi1) * math.cos(angular) + math.cos(phi1) * math.sin(angular) * math.cos(bearing)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(phi1),
        math.cos(angular) - math.sin(phi1) * math.sin(phi2),
    )
    return [math.degrees(lambda2), math.degrees(phi2)]


def midpoint(start: Sequence[float], end: Sequence[float]) -> List[float]:
    """Geodesic midpoint of two [lng, lat] points"""
    lng1, lat1 = map(math.radians, start[:2])
    lng2, lat2 = map(math.radians, end[:2])
    bx = math.cos(lat2) * math.cos(lng2 - lng1)
    by = math.cos(lat2) * math.sin(lng2 - lng1)
    lat = math.atan2(math.sin(lat1) + math.sin(lat2), math.sqrt((math.cos(lat1) + bx) ** 2 + by ** 2))
    lng = lng1 + math.atan2(by, math.cos(lat1) + bx)
    return [math.degrees(lng), math.degrees(lat)]


def line_length_km(coordinates: Sequence[Sequence[float]]) -> float:
    total = 0.0
    for start, end in zip(coordinates, coordinates[1:]):
        total += haversine_km(start[0], start[1], end[0], end[1])
    return total


def circle(center: Sequence[float], radius_km: float, steps: int = CIRCLE_STEPS) -> Polygon:
    """Polygon approximating a geodesic circle around a [lng, lat] center"""
    ring = [destination(center[0], center[1], radius_km, (i * -360.0) / steps) for i in range(steps)]
    ring.append(ring[0])
    return Polygon(ring)


# =============================================================================
# Geometry to shapes
# =============================================================================

def unwrap_geometry(geometry: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the bare geometry dict, unwrapping a Feature and keeping its radiusKm"""
    if not isinstance(geometry, dict):
        return None
    if geometry.get('type') == FEATURE:
        inner = geometry.get('geometry')
        if not isinstance(inner, dict):
            return None
        if 'radiusKm' in geometry and 'radiusKm' not in inner:
            inner = dict(inner, radiusKm=geometry['radiusKm'])
        return inner
    return geometry


def _polygon_rings(coordinates: Any) -> List:
    # A bare ring [[lng, lat], ...] is accepted as a one-ring polygon
    if coordinates and isinstance(coordinates[0], (list, tuple)) and coordinates[0] \
            and isinstance(coordinates[0][0], (int, float)):
        return [coordinates]
    return coordinates


def _make_polygon(coordinates: Any) -> Polygon:
    rings = _polygon_rings(coordinates)
    return Polygon(rings[0], holes=rings[1:] if len(rings) > 1 else None)


def build_shapes(geometry: Optional[Dict[str, Any]], radius_km: float = DEFAULT_POINT_RADIUS_KM) -> List[BaseGeometry]:
    """
    Convert a region geometry into shapely polygons.

    Args:
        geometry: GeoJSON geometry or Feature
        radius_km: Circle radius for Point geometries without radiusKm

    Returns:
        List of polygons, empty when the geometry is missing

    Raises:
        ValueError: If the geometry is malformed
    """
    geometry = unwrap_geometry(geometry)
    if geometry is None:
        return []

    geo_type = geometry.get('type')
    coordinates = geometry.get('coordinates')
    if not coordinates:
        raise ValueError(f"Geometry {geo_type} has no coordinates")

    if geo_type == POLYGON:
        return [_make_polygon(coordinates)]

    if geo_type == POINT:
        radius = float(geometry.get('radiusKm') or radius_km)
        return [circle(coordinates[:2], radius)]

    if geo_type == LINE_STRING:
        center = midpoint(coordinates[0], coordinates[-1])
        return [circle(center, line_length_km(coordinates))]

    if geo_type == MULTI_POLYGON:
        return [_make_polygon(part) for part in coordinates]

    raise ValueError(f"Unsupported geometry type: {geo_type}")


# =============================================================================
# Fence
# =============================================================================

class GeoFence:
    """Point-in-region test with shapes built once per region."""

    def __init__(self, geometry: Optional[Dict[str, Any]] = None, radius_km: float = DEFAULT_POINT_RADIUS_KM):
        self.geometry = geometry
        self.radius_km = radius_km
        self._prepared = None
        if geometry is None:
            return
        try:
            shapes = build_shapes(geometry, radius_km)
            self._prepared = [prep(shape) for shape in shapes if not shape.is_empty]
        except (ValueError, TypeError, IndexError, AttributeError) as e:
            logger.warning(f"Region geometry is malformed ({e}), geo filtering is disabled")
            self._prepared = None

    @property
    def is_active(self) -> bool:
        return bool(self._prepared)

    def contains(self, point: Optional[Coordinates]) -> bool:
        """True if the point is inside, or if there is nothing to check against"""
        if not self._prepared or point is None or not point.is_complete:
            return True
        shapely_point = Point(point.lng, point.lat)
        return any(shape.contains(shapely_point) for shape in self._prepared)


def is_inside(geometry: Optional[Dict[str, Any]], point: Optional[Coordinates],
              radius_km: float = DEFAULT_POINT_RADIUS_KM) -> bool:
    """One-off GeoFence check; build a GeoFence to test many points."""
    return GeoFence(geometry, radius_km).contains(point)
