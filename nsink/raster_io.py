"""
Raster I/O utilities for reading and writing GeoTIFF layers.

Rasters are exchanged as :class:`nsink.grid.Raster` objects; the grid
(transform, shape, CRS) travels with the data so written files align
exactly with the raster template.
"""

import logging
from pathlib import Path

import numpy as np

from nsink.grid import Raster, RasterGrid, check_grid, same_crs

logger = logging.getLogger(__name__)

STATIC_MAP_NAMES = ("removal_effic", "loading_idx", "transport_idx", "delivery_idx")


def save_raster_geotiff(
    raster: Raster,
    output_path: Path,
    dtype: str = "float32",
) -> None:
    """
    Save a raster as an LZW-compressed GeoTIFF.

    Parameters
    ----------
    raster : Raster
        Raster with grid definition
    output_path : Path
        Output GeoTIFF path
    dtype : str
        Output data type ('float32', 'float64', 'int32', 'int16', 'uint8')
    """
    import rasterio

    dtype_map = {
        "float32": (np.float32, rasterio.float32),
        "float64": (np.float64, rasterio.float64),
        "int32": (np.int32, rasterio.int32),
        "int16": (np.int16, rasterio.int16),
        "uint8": (np.uint8, rasterio.uint8),
    }
    np_dtype, rio_dtype = dtype_map.get(dtype, (np.float32, rasterio.float32))

    grid = raster.grid
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with rasterio.open(
        output_path,
        "w",
        driver="GTiff",
        height=grid.height,
        width=grid.width,
        count=1,
        dtype=rio_dtype,
        crs=grid.crs,
        transform=grid.transform,
        nodata=raster.nodata,
        compress="lzw",
    ) as dst:
        dst.write(raster.data.astype(np_dtype), 1)

    logger.info(f"Saved: {output_path} ({output_path.stat().st_size / 1024:.1f} KB)")


def read_raster(filepath: Path) -> Raster:
    """
    Read the first band of a raster file using rasterio.

    Parameters
    ----------
    filepath : Path
        Path to raster file (.tif, .vrt, ...)

    Returns
    -------
    Raster
        Band data with its grid and nodata value

    Raises
    ------
    FileNotFoundError
        If file does not exist
    """
    import rasterio

    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Raster file not found: {filepath}")

    with rasterio.open(filepath) as src:
        data = src.read(1)
        grid = RasterGrid(
            transform=src.transform,
            width=src.width,
            height=src.height,
            crs=src.crs.to_string() if src.crs is not None else None,
        )
        nodata = src.nodata

    logger.info(
        f"Read raster {filepath.name}: {grid.height}x{grid.width} cells, "
        f"cell size {grid.cellsize} ({grid.crs})"
    )
    return Raster(data=data, grid=grid, nodata=nodata)


def write_static_maps(static_maps, output_folder: Path) -> list[Path]:
    """
    Write the four static maps as GeoTIFFs.

    Parameters
    ----------
    static_maps : StaticMaps
        Output of ``generate_static_maps``
    output_folder : Path
        Destination folder (created if missing)

    Returns
    -------
    list[Path]
        Written file paths
    """
    output_folder = Path(output_folder)
    output_folder.mkdir(parents=True, exist_ok=True)

    written = []
    for name in STATIC_MAP_NAMES:
        path = output_folder / f"{name}.tif"
        save_raster_geotiff(getattr(static_maps, name), path)
        written.append(path)
    return written


def read_static_maps(input_folder: Path):
    """
    Read the four static map GeoTIFFs written by :func:`write_static_maps`.

    Sample points are not stored in the files, so the returned maps carry
    none.

    Raises
    ------
    FileNotFoundError
        If a map file is missing
    GridMismatchError
        If the maps are not on one grid
    """
    from nsink.static_maps import StaticMaps

    input_folder = Path(input_folder)
    rasters = {name: read_raster(input_folder / f"{name}.tif") for name in STATIC_MAP_NAMES}
    template = rasters["removal_effic"].grid
    for name, raster in rasters.items():
        check_grid(name, raster, template)
    return StaticMaps(**rasters)


def _fill_value(dtype: np.dtype, nodata: float) -> float:
    """``nodata`` if the dtype can hold it, else the dtype maximum."""
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        if not float(nodata).is_integer() or not info.min <= nodata <= info.max:
            return float(info.max)
    return nodata


def warp_to_grid(raster: Raster, grid: RasterGrid) -> Raster:
    """
    Resample a raster onto a grid (nearest neighbour).

    The data type is kept. Cells the source does not cover get the source
    NoData, or the grid NoData when the source has none (the dtype
    maximum if the dtype cannot hold it). A raster already on ``grid``
    is returned unchanged.
    """
    from rasterio.warp import Resampling, reproject

    if raster.grid.shape == grid.shape and raster.grid.matches(grid) and same_crs(
        raster.grid.crs, grid.crs
    ):
        return raster

    dtype = raster.data.dtype
    nodata = raster.nodata
    if nodata is None:
        nodata = _fill_value(dtype, grid.nodata)

    destination = np.full(grid.shape, nodata, dtype=dtype)
    reproject(
        source=raster.data,
        destination=destination,
        src_transform=raster.grid.transform,
        src_crs=raster.grid.crs,
        dst_transform=grid.transform,
        dst_crs=grid.crs,
        resampling=Resampling.nearest,
        src_nodata=raster.nodata,
        dst_nodata=nodata,
    )

    logger.info(
        f"Resampled raster {raster.grid.height}x{raster.grid.width} "
        f"({raster.grid.crs}) -> {grid.height}x{grid.width} ({grid.crs})"
    )
    return Raster(data=destination, grid=grid, nodata=nodata)
