"""
Utility functions for the N-Sink engine.
"""

from utils.geometry import (
    flowpath_to_geojson_feature,
    transform_crs_to_wgs84,
    transform_geometry_to_wgs84,
    transform_wgs84_to_crs,
)

__all__ = [
    "transform_wgs84_to_crs",
    "transform_crs_to_wgs84",
    "transform_geometry_to_wgs84",
    "flowpath_to_geojson_feature",
]
