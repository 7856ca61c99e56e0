"""
Geographic utilities module.

- fence.py: Point-in-region test over GeoJSON geometries
- grid.py: Search center generation for area coverage
- nominatim.py: Boundary fetching from OpenStreetMap Nominatim API
"""

from .fence import GeoFence, is_inside, build_shapes
from .grid import CoverageTiler, find_points_in_polygon, calculate_spacing_km, generate_grid
from .nominatim import get_geolocation, geojson_from_result, default_zoom_for
