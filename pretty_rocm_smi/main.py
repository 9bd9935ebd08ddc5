from __future__ import annotations

import argparse
from dataclasses import replace
import logging
import math
import os
import sys
from typing import Sequence, TextIO

from pretty_rocm_smi import __version__
from pretty_rocm_smi.classifier import classify_all
from pretty_rocm_smi.collector import Collector, RawReport, read_report
from pretty_rocm_smi.config import AppConfig, apply_threshold_overrides, default_config, load_config
from pretty_rocm_smi.errors import ConfigError, PrettySmiError
from pretty_rocm_smi.logging_utils import configure_logging, resolve_log_level
from pretty_rocm_smi.parsing import parse, parse_host_info
from pretty_rocm_smi.renderer import build_record, render_records, render_table
from pretty_rocm_smi.schema import validate_record

PROG = "pretty-rocm-smi"
EXIT_INTERRUPTED = 130


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser that reports usage errors as ConfigError instead of exiting 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(message)


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {value}")
    return number


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog=PROG,
        description="Color-coded front-end for rocm-smi GPU diagnostics",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Print one plain JSON record per GPU instead of the colored table",
    )
    parser.add_argument(
        "--path",
        metavar="FILE",
        help="Location of the rocm-smi executable (default: rocm-smi on PATH)",
    )
    parser.add_argument(
        "--input",
        metavar="FILE",
        help="Read a captured rocm-smi report from FILE ('-' for stdin) instead of running it",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        metavar="SECONDS",
        help=(
            "Give up on rocm-smi after this many seconds; the supplementary "
            "queries share one further budget of the same length (default: 10)"
        ),
    )
    parser.add_argument(
        "--threshold",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Override a threshold, e.g. temp_warn=80 (repeatable)",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="CFG file with [thresholds] and [collector] sections",
    )
    parser.add_argument(
        "--no-details",
        action="store_true",
        help="Skip the supplementary rocm-smi queries (names, VRAM bytes, driver)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_config(args: argparse.Namespace) -> AppConfig:
    """Built-in defaults, then the config file, then command-line flags."""
    config = load_config(args.config) if args.config else default_config()
    collector = config.collector
    if args.path:
        collector = replace(collector, rocm_smi_path=args.path)
    if args.timeout is not None:
        collector = replace(collector, timeout_s=args.timeout)
    if args.no_details:
        collector = replace(collector, collect_details=False)
    thresholds = apply_threshold_overrides(config.thresholds, args.threshold)
    return AppConfig(collector=collector, thresholds=thresholds)


def use_color(args: argparse.Namespace, stream: TextIO) -> bool:
    if args.no_color or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def run(args: argparse.Namespace, stdout: TextIO) -> None:
    logger = logging.getLogger("pretty_rocm_smi")
    config = resolve_config(args)

    report: RawReport
    if args.input:
        report = read_report(args.input)
    else:
        report = Collector(config.collector).collect()

    devices = parse(report)
    classifications = classify_all(devices, config.thresholds)

    if use_color(args, stdout):
        output = render_table(classifications, parse_host_info(report), config.thresholds)
    else:
        for classification in classifications:
            schema_errors = validate_record(build_record(classification))
            if schema_errors:
                logger.warning(
                    "Record for GPU %s failed schema validation with %s errors.",
                    classification.device.index,
                    len(schema_errors),
                )
                logger.debug("Schema errors: %s", schema_errors)
        output = render_records(classifications)
    stdout.write(output)
    stdout.flush()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        configure_logging(resolve_log_level(args.verbose, args.log_level))
        run(args, sys.stdout)
    except PrettySmiError as exc:
        logging.getLogger("pretty_rocm_smi").debug("Failed: %r", exc)
        print(f"{PROG}: error: {exc}", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
