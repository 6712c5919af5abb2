"""
Coordinate transformation utilities.

Provides functions for transforming coordinates between WGS84 (EPSG:4326)
and the projected CRS of a watershed (CONUS Albers, EPSG:5072, by default).
"""

from functools import lru_cache
from typing import Any

from pyproj import Transformer
from shapely.geometry import LineString, Point, mapping
from shapely.ops import transform

from nsink.constants import CRS_CONUS_ALBERS, CRS_WGS84


@lru_cache(maxsize=16)
def _get_transformer(source: str, target: str) -> Transformer:
    """
    Get cached transformer between two CRS (thread-safe in PyProj 3.0+).

    Returns
    -------
    Transformer
        PyProj transformer with (x, y) / (lon, lat) axis order
    """
    return Transformer.from_crs(source, target, always_xy=True)


def transform_wgs84_to_crs(
    latitude: float,
    longitude: float,
    crs: str = CRS_CONUS_ALBERS,
) -> Point:
    """
    Transform WGS84 coordinates to a Point in a projected CRS.

    Parameters
    ----------
    latitude : float
        Latitude in WGS84 (decimal degrees)
    longitude : float
        Longitude in WGS84 (decimal degrees)
    crs : str
        Target CRS

    Returns
    -------
    Point
        Shapely Point in ``crs``
    """
    transformer = _get_transformer(CRS_WGS84, crs)
    # PyProj with always_xy=True expects (lon, lat) order
    x, y = transformer.transform(longitude, latitude)
    return Point(x, y)


def transform_crs_to_wgs84(
    x: float,
    y: float,
    crs: str = CRS_CONUS_ALBERS,
) -> tuple[float, float]:
    """
    Transform projected coordinates to WGS84.

    Returns
    -------
    tuple[float, float]
        (longitude, latitude) in WGS84
    """
    transformer = _get_transformer(crs, CRS_WGS84)
    lon, lat = transformer.transform(x, y)
    return lon, lat


def transform_geometry_to_wgs84(geometry, crs: str = CRS_CONUS_ALBERS):
    """Transform any shapely geometry from ``crs`` to WGS84."""
    transformer = _get_transformer(crs, CRS_WGS84)
    return transform(transformer.transform, geometry)


def flowpath_to_geojson_feature(
    line: LineString, properties: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Convert a flow path LineString to a GeoJSON Feature.

    Parameters
    ----------
    line : LineString
        Flow path geometry
    properties : dict, optional
        Properties to include in the Feature

    Returns
    -------
    dict
        GeoJSON Feature dictionary

    Examples
    --------
    >>> from shapely.geometry import LineString
    >>> line = LineString([(-72.2, 41.3), (-72.1, 41.3)])
    >>> feature = flowpath_to_geojson_feature(line, {"cumulative_removal": 42.0})
    >>> print(feature["geometry"]["type"])
    LineString
    """
    return {
        "type": "Feature",
        "geometry": mapping(line),
        "properties": properties or {},
    }
