#!/usr/bin/env python3
"""
StackWarp - replay registration transforms onto an image sequence
Command-line entry point
"""

import argparse
import logging
import sys

from tqdm import tqdm

from .core.batch import BatchDriver
from .core.errors import StackWarpError
from .core.mesh import DEFAULT_MESH_RESOLUTION
from .utils.config import BatchConfig
from .utils.logger import setup_logger

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="StackWarp - Transform a virtual stack of images with registration transform files"
    )
    parser.add_argument(
        "source",
        nargs="?",
        help="Source directory with the images to transform"
    )
    parser.add_argument(
        "output",
        nargs="?",
        help="Output directory for the transformed images"
    )
    parser.add_argument(
        "transforms",
        nargs="?",
        help="Directory with one transform (.xml) file per image"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="YAML configuration file (command-line values take precedence)"
    )
    parser.add_argument(
        "--no-interpolate",
        dest="interpolate",
        action="store_false",
        default=None,
        help="Use nearest-neighbor sampling instead of bilinear interpolation"
    )
    parser.add_argument(
        "--range",
        type=int,
        nargs=2,
        metavar=("FIRST", "LAST"),
        help="Only transform sorted indices FIRST (inclusive) to LAST (exclusive)"
    )
    parser.add_argument(
        "--mesh-resolution",
        type=int,
        default=None,
        help=f"Transform mesh vertices per row (default: {DEFAULT_MESH_RESOLUTION})"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads (default: sized from CPUs and memory)"
    )
    parser.add_argument(
        "--no-common-frame",
        dest="common_frame",
        action="store_false",
        default=None,
        help="Keep each output at its own bounding box instead of a shared canvas"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def load_config(args: argparse.Namespace) -> BatchConfig:
    overrides = dict(
        source_dir=args.source,
        output_dir=args.output,
        transform_dir=args.transforms,
        interpolate=args.interpolate,
        mesh_resolution=args.mesh_resolution,
        max_workers=args.workers,
        common_frame=args.common_frame,
    )
    if args.range:
        overrides["first"], overrides["last"] = args.range

    if args.config:
        config = BatchConfig.from_yaml(args.config)
    else:
        config = BatchConfig(source_dir=None, output_dir=None, transform_dir=None)
    return config.with_overrides(**overrides).validate()


def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger("stackwarp", logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = load_config(args)
    except StackWarpError as e:
        parser.error(str(e))

    with tqdm(total=100, desc="Transforming", unit="%") as progress:
        def on_progress(percentage: int, message: str):
            progress.set_postfix_str(message)
            progress.update(percentage - progress.n)

        driver = BatchDriver(config, progress_callback=on_progress)
        try:
            results = driver.run()
        except StackWarpError as e:
            logger.error(f"Error: {e}")
            return 1

    logger.info(f"Process completed successfully! {len(results)} images written to {config.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
