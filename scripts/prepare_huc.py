#!/usr/bin/env python3
"""
Prepare a watershed folder from raw NHDPlus, SSURGO and raster layers.

Selects the HUC12 from a watershed boundary layer, removes salt water,
lays a raster template over the land, clips and standardizes every layer
and writes the folder read by trace_flowpath and generate_static_maps.

Usage:
    python -m scripts.prepare_huc --huc wbd.gpkg --huc12 011000020904 \\
        --flowlines NHDFlowline.shp --waterbodies NHDWaterbody.shp \\
        --mapunits ssurgo_mapunits.shp --components ssurgo_component.csv \\
        --erom EROM_MA0001.DBF --vaa PlusFlowlineVAA.dbf \\
        --lakemorpho LakeMorpho.csv \\
        --fdr fdr.tif --impervious impervious.tif --nlcd nlcd.tif \\
        --output data/011000020904

Tables may be CSV files or attribute-only layers (.dbf) readable by
geopandas.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import geopandas as gpd
import pandas as pd

from nsink.config import get_settings
from nsink.data_provider import build_prepared_data, save_prepared_data
from nsink.errors import NsinkError
from nsink.log import bind_run_context, configure_logging
from nsink.raster_io import read_raster

logger = logging.getLogger(__name__)

VECTOR_INPUTS = ("flowlines", "waterbodies", "mapunits")
TABLE_INPUTS = ("components", "erom", "vaa", "lakemorpho")
RASTER_INPUTS = ("fdr", "impervious", "nlcd")


def read_table(path: Path) -> pd.DataFrame:
    """Read a CSV or an attribute table (.dbf, GeoPackage layer, ...)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path)
    table = gpd.read_file(path)
    return pd.DataFrame(table.drop(columns="geometry", errors="ignore"))


def select_huc(boundaries: gpd.GeoDataFrame, huc12: str | None) -> gpd.GeoDataFrame:
    """
    Watershed features whose HUC12 code starts with ``huc12``.

    All features are kept when ``huc12`` is None.
    """
    if huc12 is None:
        return boundaries
    column = next((c for c in boundaries.columns if c.lower() in ("huc12", "huc_12")), None)
    if column is None:
        raise ValueError("Watershed layer has no HUC12 column")
    selected = boundaries[boundaries[column].astype(str).str.startswith(huc12)]
    if selected.empty:
        raise ValueError(f"HUC12 {huc12} not found in the watershed layer")
    return selected


def run_prepare(
    huc_path: Path,
    inputs: dict[str, Path],
    output_folder: Path,
    huc12: str | None = None,
) -> list[Path]:
    """
    Build and save a prepared watershed folder.

    Parameters
    ----------
    huc_path : Path
        Watershed boundary layer
    inputs : dict[str, Path]
        Paths keyed by ``VECTOR_INPUTS``, ``TABLE_INPUTS`` and
        ``RASTER_INPUTS`` names
    output_folder : Path
        Destination folder
    huc12 : str, optional
        HUC12 code (or prefix) to select from the boundary layer

    Returns
    -------
    list[Path]
        Written file paths
    """
    huc = select_huc(gpd.read_file(huc_path), huc12)
    logger.info(f"Watershed: {len(huc)} boundary features from {huc_path}")

    layers = {name: gpd.read_file(inputs[name]) for name in VECTOR_INPUTS}
    tables = {name: read_table(inputs[name]) for name in TABLE_INPUTS}
    rasters = {name: read_raster(inputs[name]) for name in RASTER_INPUTS}

    data = build_prepared_data(
        huc=huc,
        flowlines=layers["flowlines"],
        waterbodies=layers["waterbodies"],
        mapunits=layers["mapunits"],
        components=tables["components"],
        erom=tables["erom"],
        vaa=tables["vaa"],
        lakemorpho_table=tables["lakemorpho"],
        fdr=rasters["fdr"],
        impervious=rasters["impervious"],
        nlcd=rasters["nlcd"],
    )
    return save_prepared_data(data, output_folder)


def main():
    """Main entry point for watershed preparation."""
    parser = argparse.ArgumentParser(
        description="Prepare a watershed folder for nitrogen removal analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--huc", type=str, required=True, help="Watershed boundary layer")
    parser.add_argument(
        "--huc12",
        type=str,
        default=None,
        help="HUC12 code to select (default: merge all boundary features)",
    )
    for name in VECTOR_INPUTS + TABLE_INPUTS + RASTER_INPUTS:
        parser.add_argument(f"--{name}", type=str, required=True, help=f"{name} input")
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        required=True,
        help="Output folder for the prepared layers",
    )

    args = parser.parse_args()
    configure_logging(get_settings().log_level)
    bind_run_context(huc=args.huc12 or args.huc)

    inputs = {
        name: Path(getattr(args, name))
        for name in VECTOR_INPUTS + TABLE_INPUTS + RASTER_INPUTS
    }
    start_time = time.time()

    try:
        written = run_prepare(Path(args.huc), inputs, Path(args.output), args.huc12)
    except (FileNotFoundError, ValueError, NsinkError) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(
        f"Prepared {len(written)} files in {args.output} "
        f"in {time.time() - start_time:.1f}s"
    )


if __name__ == "__main__":
    main()
