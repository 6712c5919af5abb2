#!/usr/bin/env python3
"""
Trace a flow path and report nitrogen removal along it.

Loads a prepared watershed folder, computes removal surfaces, traces the
flow path from a start point to the outlet and prints the JSON report.

Usage:
    python -m scripts.trace_flowpath --input data/011000020904 --x 1912345 --y 2318765
    python -m scripts.trace_flowpath --input data/011000020904 --lat 41.35 --lon -72.21

Examples:
    # Treat off-network lakes as sinks and save the path as GeoJSON
    python -m scripts.trace_flowpath -i data/huc --lat 41.35 --lon -72.21 \\
        --off-network-lakes removal --output path.json --table path.csv
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from models.schemas import OffNetworkParams, OffNetworkPolicy
from nsink.config import get_settings
from nsink.data_provider import load_prepared_data
from nsink.errors import NsinkError
from nsink.flow_network import build_graph
from nsink.flowpath import trace
from nsink.log import bind_run_context, configure_logging
from nsink.removal import compute_removal
from nsink.summarize import summarize
from utils.geometry import (
    flowpath_to_geojson_feature,
    transform_geometry_to_wgs84,
    transform_wgs84_to_crs,
)

logger = logging.getLogger(__name__)

_POLICIES = [p.value for p in OffNetworkPolicy]


def add_off_network_arguments(parser: argparse.ArgumentParser) -> None:
    """Off-network policy flags shared by the command-line scripts."""
    for feature in ("lakes", "streams", "canalsditches"):
        parser.add_argument(
            f"--off-network-{feature}",
            choices=_POLICIES,
            default=OffNetworkPolicy.PASS_THROUGH.value,
            help=f"Treatment of off-network {feature} (default: pass_through)",
        )


def off_network_from_args(args: argparse.Namespace) -> OffNetworkParams:
    return OffNetworkParams(
        lakes=args.off_network_lakes,
        streams=args.off_network_streams,
        canalsditches=args.off_network_canalsditches,
    )


def run_trace(
    input_folder: Path,
    x: float,
    y: float,
    off_network: OffNetworkParams,
    output_path: Path | None = None,
    table_path: Path | None = None,
) -> dict:
    """
    Trace one flow path and build its report.

    Returns
    -------
    dict
        FlowPathReport as a dict; with ``output_path`` a GeoJSON Feature
        of the path (WGS84) carrying the report is also written, with
        ``table_path`` the collapsed removal rows as CSV
    """
    data = load_prepared_data(input_folder)
    surfaces = compute_removal(data, off_network)
    graph = build_graph(data.segments, data.lakes_by_id)

    path = trace((x, y), data, graph)
    summary = summarize(path, surfaces)
    report = summary.to_report(crs=data.raster_template.crs).model_dump()

    logger.info(
        f"Cumulative removal {summary.cumulative_removal:.1f}% over "
        f"{len(summary.rows)} segments (handoff {path.handoff_comid})"
    )

    if output_path is not None:
        line = transform_geometry_to_wgs84(
            path.to_linestring(data), data.raster_template.crs
        )
        feature = flowpath_to_geojson_feature(line, report)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(feature, indent=2))
        logger.info(f"Saved: {output_path}")

    if table_path is not None:
        table_path.parent.mkdir(parents=True, exist_ok=True)
        summary.to_dataframe().to_csv(table_path, index=False)
        logger.info(f"Saved: {table_path}")

    return report


def main():
    """Main entry point for flow path tracing."""
    parser = argparse.ArgumentParser(
        description="Trace a flow path and summarize nitrogen removal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--input",
        "-i",
        type=str,
        required=True,
        help="Folder with prepared watershed layers",
    )
    parser.add_argument("--x", type=float, default=None, help="Start X in data CRS")
    parser.add_argument("--y", type=float, default=None, help="Start Y in data CRS")
    parser.add_argument("--lat", type=float, default=None, help="Start latitude (WGS84)")
    parser.add_argument("--lon", type=float, default=None, help="Start longitude (WGS84)")
    parser.add_argument(
        "--crs",
        type=str,
        default=None,
        help="Data CRS for --lat/--lon (default: CRS of the prepared rasters)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write the flow path as a GeoJSON Feature",
    )
    parser.add_argument(
        "--table",
        type=str,
        default=None,
        help="Write the removal rows along the path as CSV",
    )
    add_off_network_arguments(parser)

    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    if args.x is not None and args.y is not None:
        x, y = args.x, args.y
    elif args.lat is not None and args.lon is not None:
        crs = args.crs
        if crs is None:
            from nsink.raster_io import read_raster

            crs = read_raster(Path(args.input) / "fdr.tif").grid.crs
        point = transform_wgs84_to_crs(args.lat, args.lon, crs)
        x, y = point.x, point.y
    else:
        parser.error("Provide either --x/--y or --lat/--lon")

    bind_run_context(input=args.input, x=x, y=y)
    start_time = time.time()

    try:
        report = run_trace(
            Path(args.input),
            x,
            y,
            off_network_from_args(args),
            Path(args.output) if args.output else None,
            Path(args.table) if args.table else None,
        )
    except (FileNotFoundError, NsinkError) as e:
        logger.error(str(e))
        sys.exit(1)

    print(json.dumps(report, indent=2))
    logger.info(f"Time elapsed: {time.time() - start_time:.1f}s")


if __name__ == "__main__":
    main()
