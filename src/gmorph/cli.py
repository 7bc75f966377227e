import argparse
import sys
from pathlib import Path
from typing import List, Optional

from gmorph.config import ConfigError, load_config
from gmorph.log import configure_logging, get_logger
from gmorph.pipeline import run_analysis


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gmorph",
        description=(
            "Landmark-based geometric morphometric analysis "
            "(GPA, allometry, PCA, disparity)."
        ),
    )
    parser.add_argument("config", help="Path to the analysis JSON config")
    parser.add_argument(
        "--output-dir",
        help="Also save figures as PNG files in this directory",
    )
    parser.add_argument(
        "--no-show",
        action="store_true",
        help="Do not open interactive figure windows",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        help="Override the number of permutations",
    )
    parser.add_argument("--seed", type=int, help="Override the random seed")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        raise SystemExit(f"[CONFIG] {e}") from e

    if args.output_dir:
        config.output_dir = Path(args.output_dir)
    if args.no_show:
        config.show = False
    if args.iterations is not None:
        config.iterations = args.iterations
    if args.seed is not None:
        config.seed = args.seed
    if args.log_level:
        config.log_level = args.log_level

    configure_logging(config.log_level, config.log_file)
    logger = get_logger("cli")

    if not config.show and config.output_dir is None:
        logger.warning(
            "Figures are neither shown nor saved; pass --output-dir to keep them"
        )

    try:
        results = run_analysis(config)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1

    saved = [p for p in results.figures.values() if p is not None]
    if saved:
        logger.info("Wrote %d figures to %s", len(saved), config.output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
