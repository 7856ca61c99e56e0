"""
Coverage Tiling

Splits a region into the map centers we search from, spaced so that one
browser viewport at the chosen zoom roughly covers one grid cell.

Higher zoom means more, smaller cells: exponentially more search tasks,
but Google returns at most 120 places per search so dense areas need it.
"""

import math
from typing import Any, Dict, List, Optional

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from ..config import METERS_PER_PIXEL_AT_ZOOM_0, VIEWPORT_PX, DEFAULT_POINT_RADIUS_KM
from ..logging_config import get_logger
from ..models import Coordinates
from .fence import POINT, LINE_STRING, build_shapes, haversine_km, unwrap_geometry

logger = get_logger(__name__)

_EPSILON = 1e-12


def distance_by_zoom(lat: float, zoom: float) -> float:
    """Meters per pixel at a latitude and zoom level"""
    return METERS_PER_PIXEL_AT_ZOOM_0 * (math.cos((lat * math.pi) / 180) / (2 ** zoom))


def calculate_spacing_km(lat: float, zoom: float, spread_multiplier: float = 1.0) -> float:
    """
    Distance between neighbouring search centers.

    Args:
        lat: Reference latitude (northern edge of the bounding box)
        zoom: Map zoom level
        spread_multiplier: >1 spreads points further apart (fewer searches)

    Returns:
        Spacing in kilometers
    """
    return distance_by_zoom(lat, zoom) * (VIEWPORT_PX / 1000) * spread_multiplier


def _axis_positions(start: float, end: float, cell: float) -> List[float]:
    """Grid positions along one axis, centered inside [start, end]"""
    span = end - start
    if cell <= 0:
        return [start + span / 2]
    count = math.floor(span / cell)
    current = start + (span - count * cell) / 2
    positions = []
    while current <= end + _EPSILON:
        positions.append(current)
        current += cell
    return positions


def generate_grid(shape: BaseGeometry, spacing_km: float) -> List[Coordinates]:
    """
    Generate a regular grid over the shape's bounding box, masked to the shape.

    Args:
        shape: Polygon in [lng, lat] coordinates
        spacing_km: Cell side in kilometers

    Returns:
        Grid points lying strictly inside the shape
    """
    west, south, east, north = shape.bounds
    width_km = haversine_km(west, south, east, south)
    height_km = haversine_km(west, south, west, north)

    cell_width = spacing_km / width_km * (east - west) if width_km > 0 else 0.0
    cell_height = spacing_km / height_km * (north - south) if height_km > 0 else 0.0

    mask = prep(shape)
    points = []
    for lng in _axis_positions(west, east, cell_width):
        for lat in _axis_positions(south, north, cell_height):
            if mask.contains(Point(lng, lat)):
                points.append(Coordinates(lat=round(lat, 7), lng=round(lng, 7)))
    return points


class CoverageTiler:
    """
    Produces the ordered search centers covering a region.

    Args:
        zoom: Zoom level the searches will run at
        spread_multiplier: Spacing multiplier, 1 = one viewport per cell
        point_radius_km: Circle radius for Point regions
        dense_points: Grid Point regions at half spacing
    """

    def __init__(self, zoom: int, spread_multiplier: float = 1.0,
                 point_radius_km: float = DEFAULT_POINT_RADIUS_KM, dense_points: bool = True):
        self.zoom = zoom
        self.spread_multiplier = spread_multiplier
        self.point_radius_km = point_radius_km
        self.dense_points = dense_points

    def tile(self, geometry: Optional[Dict[str, Any]]) -> List[Coordinates]:
        """
        Compute search centers for a region.

        Args:
            geometry: GeoJSON geometry or Feature

        Returns:
            List of Coordinates, empty if there is no geometry
        """
        geometry = unwrap_geometry(geometry)
        if geometry is None or not geometry.get('coordinates'):
            return []

        geo_type = geometry.get('type')
        coordinates = geometry['coordinates']
        points: List[Coordinates] = []

        if geo_type == POINT:
            points.append(Coordinates(lat=coordinates[1], lng=coordinates[0]))
        if geo_type == LINE_STRING:
            for lng, lat in (coordinates[0][:2], coordinates[-1][:2]):
                points.append(Coordinates(lat=lat, lng=lng))

        for shape in build_shapes(geometry, self.point_radius_km):
            points.extend(self._tile_shape(shape, geo_type))

        logger.info(f"Split the region into {len(points)} search centers at zoom {self.zoom}")
        return points

    def _tile_shape(self, shape: BaseGeometry, geo_type: str) -> List[Coordinates]:
        north = shape.bounds[3]
        spacing = calculate_spacing_km(north, self.zoom, self.spread_multiplier)

        # A grid too coarse for the shape can come out empty, shrink until it fits
        grid: List[Coordinates] = []
        while spacing > 0:
            distance = spacing / 2 if geo_type == POINT and self.dense_points else spacing
            logger.debug(f"Trying grid spacing {distance:.3f} km")
            grid = generate_grid(shape, distance)
            if grid:
                break
            spacing -= 1

        if not grid and shape.area > 0:
            inner = shape.representative_point()
            grid = [Coordinates(lat=round(inner.y, 7), lng=round(inner.x, 7))]
        return grid


def find_points_in_polygon(geometry: Optional[Dict[str, Any]], zoom: int,
                           spread_multiplier: float = 1.0) -> List[Coordinates]:
    """Convenience wrapper around CoverageTiler.tile()"""
    return CoverageTiler(zoom, spread_multiplier).tile(geometry)
