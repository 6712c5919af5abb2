#!/usr/bin/env python3
"""
Generate the N-Sink static maps for a watershed.

Writes removal_effic.tif, loading_idx.tif, transport_idx.tif and
delivery_idx.tif plus a JSON summary (static_maps.json).

Usage:
    python -m scripts.generate_static_maps --input data/huc --output out/huc
    python -m scripts.generate_static_maps -i data/huc -o out/huc --samples 500 --seed 23

    # Summarize maps already in the output folder without regenerating
    python -m scripts.generate_static_maps -o out/huc --summarize-only
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from nsink.config import get_settings
from nsink.data_provider import load_prepared_data
from nsink.errors import NsinkError
from nsink.log import bind_run_context, configure_logging
from nsink.raster_io import read_static_maps, write_static_maps
from nsink.removal import compute_removal
from nsink.static_maps import generate_static_maps, summarize_raster
from scripts.trace_flowpath import add_off_network_arguments, off_network_from_args

logger = logging.getLogger(__name__)


def summarize_folder(output_folder: Path) -> list[dict]:
    """Min/max/mean of each static map GeoTIFF in a folder."""
    static_maps = read_static_maps(output_folder)
    return [
        summarize_raster(name, raster).model_dump()
        for name, raster in static_maps.as_dict().items()
    ]


def main():
    """Main entry point for static map generation."""
    parser = argparse.ArgumentParser(
        description="Generate removal, loading, transport and delivery maps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--input",
        "-i",
        type=str,
        default=None,
        help="Folder with prepared watershed layers (required unless --summarize-only)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        required=True,
        help="Output folder for GeoTIFFs and summary",
    )
    parser.add_argument(
        "--samples",
        "-n",
        type=int,
        default=100,
        help="Number of sampled start points (default: 100)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for sampling (default: NSINK_RANDOM_SEED)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for tracing (default: NSINK_N_WORKERS)",
    )
    parser.add_argument(
        "--summarize-only",
        action="store_true",
        help="Print summaries of the maps in --output instead of generating them",
    )
    add_off_network_arguments(parser)

    args = parser.parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)

    if args.summarize_only:
        try:
            summaries = summarize_folder(Path(args.output))
        except (FileNotFoundError, NsinkError) as e:
            logger.error(str(e))
            sys.exit(1)
        print(json.dumps(summaries, indent=2))
        return
    if args.input is None:
        parser.error("--input is required to generate maps")

    if args.workers is not None:
        settings = settings.model_copy(update={"n_workers": max(1, args.workers)})
    seed = args.seed if args.seed is not None else settings.random_seed

    bind_run_context(input=args.input, samples=args.samples, seed=seed)

    input_folder = Path(args.input)
    output_folder = Path(args.output)
    start_time = time.time()

    try:
        data = load_prepared_data(input_folder)
        surfaces = compute_removal(data, off_network_from_args(args), settings)
        static_maps = generate_static_maps(
            data, surfaces, args.samples, seed=seed, settings=settings
        )
    except (FileNotFoundError, NsinkError) as e:
        logger.error(str(e))
        sys.exit(1)

    written = write_static_maps(static_maps, output_folder)
    report = static_maps.to_report(seed=seed)
    summary_path = output_folder / "static_maps.json"
    summary_path.write_text(report.model_dump_json(indent=2))

    logger.info(
        f"Static maps: {report.traced_samples}/{report.requested_samples} samples, "
        f"{len(written)} rasters written to {output_folder} "
        f"in {time.time() - start_time:.1f}s"
    )


if __name__ == "__main__":
    main()
