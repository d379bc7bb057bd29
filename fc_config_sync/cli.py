"""Command-line interface for fc-config-sync."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .config import load_config
from .logging import configure_logging
from .rates import RATE_PRESETS, AxisRateParams, RateAlgorithm, max_rate, sample_curve

LOGGER = logging.getLogger(__name__)


def _algorithm(value: str) -> RateAlgorithm:
    try:
        return RateAlgorithm.from_name(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Flight-controller rate curves and configuration sync",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    rates_parser = subparsers.add_parser("rates", help="Print a rate curve")
    rates_parser.add_argument(
        "--algorithm", type=_algorithm, default=RateAlgorithm.CLASSIC
    )
    rates_parser.add_argument("--center", type=int, default=100, help="Center rate")
    rates_parser.add_argument("--max", type=int, default=70, help="Max rate")
    rates_parser.add_argument("--expo", type=int, default=0, help="Expo")
    rates_parser.add_argument(
        "--points", type=int, default=11, help="Stick positions to sample (min 2)"
    )

    presets_parser = subparsers.add_parser(
        "presets", help="List rate presets and their max rates"
    )
    presets_parser.add_argument(
        "--algorithm", type=_algorithm, default=RateAlgorithm.CLASSIC
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    if args.command == "rates":
        params = AxisRateParams(args.center, args.max, args.expo)
        try:
            samples = sample_curve(params, args.algorithm, args.points)
        except ValueError as exc:
            LOGGER.error("%s", exc)
            return 1
        print(f"{args.algorithm.name.lower()} rates ({args.center}/{args.max}/{args.expo})")
        for stick, value in samples:
            print(f"{stick:5.2f}  {value:9.2f}")
        print(f"max rate: {max_rate(params, args.algorithm):.2f} deg/s")
        return 0

    if args.command == "presets":
        for key, preset in RATE_PRESETS.items():
            maxima = [
                max_rate(AxisRateParams(*axis), args.algorithm)
                for axis in (preset.roll, preset.pitch, preset.yaw)
            ]
            print(
                f"{key:<10} {preset.description:<30} "
                + " ".join(f"{value:7.1f}" for value in maxima)
            )
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
