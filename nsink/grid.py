"""
Raster grid definition shared by every raster in a run.

A ``RasterGrid`` pins origin, resolution, shape and CRS. All rasters in
prepared data and in static maps must share the template grid exactly;
:func:`check_grid` is the single place where that is enforced.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np
from affine import Affine
from shapely.geometry import Polygon, box

from nsink.constants import DEFAULT_NODATA
from nsink.errors import GridMismatchError

logger = logging.getLogger(__name__)

# Tolerance for comparing transform coefficients [CRS units]
_TRANSFORM_TOL = 1e-6


@dataclass(frozen=True)
class RasterGrid:
    """
    Georeferenced grid definition.

    Attributes
    ----------
    transform : Affine
        Affine transform of the upper-left corner (north-up)
    width : int
        Number of columns
    height : int
        Number of rows
    crs : str
        Coordinate reference system (EPSG code or WKT)
    nodata : float
        NoData sentinel for float rasters on this grid
    """

    transform: Affine
    width: int
    height: int
    crs: str
    nodata: float = DEFAULT_NODATA

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def cellsize(self) -> float:
        return abs(self.transform.a)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the grid extent."""
        xmin = self.transform.c
        ymax = self.transform.f
        xmax = xmin + self.width * self.transform.a
        ymin = ymax + self.height * self.transform.e
        return (xmin, ymin, xmax, ymax)

    def index(self, x: float, y: float) -> tuple[int, int]:
        """Row/column of the cell containing (x, y); may lie off-grid."""
        col, row = ~self.transform * (x, y)
        return int(math.floor(row)), int(math.floor(col))

    def xy(self, row: int, col: int) -> tuple[float, float]:
        """Coordinates of the centre of cell (row, col)."""
        x, y = self.transform * (col + 0.5, row + 0.5)
        return float(x), float(y)

    def contains_cell(self, row: int, col: int) -> bool:
        return 0 <= row < self.height and 0 <= col < self.width

    def cell_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """Arrays (xs, ys) of every cell centre, shaped like the grid."""
        cols, rows = np.meshgrid(
            np.arange(self.width) + 0.5, np.arange(self.height) + 0.5
        )
        xs = self.transform.c + cols * self.transform.a
        ys = self.transform.f + rows * self.transform.e
        return xs, ys

    def matches(self, other: "RasterGrid") -> bool:
        """True if both grids share shape, CRS and transform."""
        if self.shape != other.shape or not same_crs(self.crs, other.crs):
            return False
        return all(
            abs(a - b) <= _TRANSFORM_TOL
            for a, b in zip(self.transform[:6], other.transform[:6], strict=True)
        )

    @classmethod
    def from_bounds(
        cls,
        xmin: float,
        ymin: float,
        xmax: float,
        ymax: float,
        resolution: float,
        crs: str,
        nodata: float = DEFAULT_NODATA,
    ) -> "RasterGrid":
        """
        Build a north-up grid covering the bounds at a given resolution.

        The extent is expanded to a whole number of cells anchored at
        the upper-left corner.
        """
        if resolution <= 0:
            raise ValueError(f"Resolution must be positive, got {resolution}")
        width = max(1, int(math.ceil((xmax - xmin) / resolution)))
        height = max(1, int(math.ceil((ymax - ymin) / resolution)))
        transform = Affine.translation(xmin, ymax) * Affine.scale(
            resolution, -resolution
        )
        return cls(transform=transform, width=width, height=height, crs=crs, nodata=nodata)

    @classmethod
    def from_polygon(
        cls,
        polygon: Polygon,
        resolution: float,
        crs: str,
        nodata: float = DEFAULT_NODATA,
    ) -> "RasterGrid":
        """Raster template covering a watershed polygon."""
        return cls.from_bounds(*polygon.bounds, resolution=resolution, crs=crs, nodata=nodata)

    def extent_polygon(self) -> Polygon:
        return box(*self.bounds)


@dataclass(frozen=True)
class Raster:
    """
    Numeric grid of cells on a ``RasterGrid``.

    Attributes
    ----------
    data : np.ndarray
        2-D array shaped ``grid.shape``
    grid : RasterGrid
        Grid definition
    nodata : float | None
        NoData sentinel of ``data`` (None if every cell is valid)
    """

    data: np.ndarray
    grid: RasterGrid
    nodata: float | None = None

    def __post_init__(self):
        if self.data.shape != self.grid.shape:
            raise GridMismatchError(
                f"Raster data shape {self.data.shape} does not match "
                f"grid shape {self.grid.shape}"
            )

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean mask of cells holding data."""
        mask = np.ones(self.data.shape, dtype=np.bool_)
        if self.nodata is not None:
            mask &= self.data != self.nodata
        if np.issubdtype(self.data.dtype, np.floating):
            mask &= ~np.isnan(self.data)
        return mask

    def value_at(self, row: int, col: int) -> float | None:
        """Cell value, or None for NoData / off-grid cells."""
        if not self.grid.contains_cell(row, col):
            return None
        value = self.data[row, col]
        if self.nodata is not None and value == self.nodata:
            return None
        if np.issubdtype(self.data.dtype, np.floating) and np.isnan(value):
            return None
        return float(value)


def same_crs(a, b) -> bool:
    """Compare two CRS definitions (EPSG string, WKT, or pyproj CRS)."""
    if a is None or b is None:
        return a is b
    if a == b:
        return True
    from pyproj import CRS

    return CRS.from_user_input(a) == CRS.from_user_input(b)


def check_grid(name: str, raster: Raster, template: RasterGrid) -> None:
    """
    Validate that a raster shares the template grid.

    Parameters
    ----------
    name : str
        Layer name for the error message
    raster : Raster
        Raster to check
    template : RasterGrid
        Reference grid

    Raises
    ------
    GridMismatchError
        If shape, CRS or transform differ
    """
    grid = raster.grid
    if not same_crs(grid.crs, template.crs):
        raise GridMismatchError(
            f"{name}: CRS {grid.crs!r} differs from template {template.crs!r}"
        )
    if grid.shape != template.shape:
        raise GridMismatchError(
            f"{name}: shape {grid.shape} differs from template {template.shape}"
        )
    if not grid.matches(template):
        raise GridMismatchError(
            f"{name}: transform {tuple(grid.transform)[:6]} differs from "
            f"template {tuple(template.transform)[:6]}"
        )
    logger.debug(f"Grid check passed for {name}")


def check_crs(name: str, crs, template: RasterGrid) -> None:
    """Validate that a vector layer CRS matches the template CRS."""
    if crs is None:
        raise GridMismatchError(f"{name}: layer has no CRS")
    if not same_crs(crs, template.crs):
        raise GridMismatchError(
            f"{name}: CRS {crs} differs from template {template.crs!r}"
        )
