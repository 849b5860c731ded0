"""
CAMPAIGN ANALYST - COMMAND LINE ENTRY POINT
===========================================

Runs the classifier comparison on a bank marketing file:

    campaign-analyst bank-full.csv --jobs 4 --output-dir results/

Command line options override the environment (``CAMPAIGN_*``) and ``.env``
settings. Exit status is 0 on success and 1 when the input or the arguments
are invalid.
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from campaign_analyst import __version__
from campaign_analyst.config import DEFAULT_MODELS, LogLevel, Settings, configure_logging
from campaign_analyst.exceptions import FormatError, InvalidArgument
from campaign_analyst.ml.auto_pipeline import ComparisonPipeline
from campaign_analyst.ml.reporting import render_comparison

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campaign-analyst",
        description="Compare classifiers on the bank direct-marketing data set.",
    )
    parser.add_argument("data_path", help="Delimited input file (e.g. bank-full.csv)")
    parser.add_argument("--holdout", type=float, help="Fraction of rows held out for testing (default 0.40)")
    parser.add_argument("--seed", type=int, help="Seed of the holdout partition (default 0)")
    parser.add_argument("--jobs", type=int, help="Worker pool size, -1 for all cores (default 2)")
    parser.add_argument(
        "--models",
        help=f"Comma-separated models to compare (default: {','.join(DEFAULT_MODELS)})",
    )
    parser.add_argument("--no-selection", action="store_true", help="Skip feature selection and the reduced ensemble")
    parser.add_argument("--output-dir", help="Directory for the comparison tables and figures")
    parser.add_argument("--log-level", choices=[level.value for level in LogLevel], help="Logging level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """
    Build settings from the environment with the command line options on top.

    Raises:
        InvalidArgument: if an option fails validation
    """
    overrides: Dict[str, Dict[str, Any]] = {"data": {"path": args.data_path}}
    if args.holdout is not None:
        overrides["partition"] = {"holdout": args.holdout}
    if args.seed is not None:
        overrides.setdefault("partition", {})["seed"] = args.seed
    if args.jobs is not None:
        overrides["parallel"] = {"n_jobs": args.jobs}
    if args.models:
        overrides["models"] = {"enabled": _split_models(args.models)}
    if args.no_selection:
        overrides["selection"] = {"enabled": False}
    if args.output_dir:
        overrides["report"] = {"output_dir": args.output_dir}
    if args.log_level:
        overrides["monitoring"] = {"log_level": args.log_level}

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise InvalidArgument(f"Invalid option: {exc}") from exc


def _split_models(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except InvalidArgument as exc:
        parser.exit(1, f"{parser.prog}: error: {exc}\n")

    configure_logging(settings)

    try:
        result = ComparisonPipeline(settings).run()
    except (FormatError, InvalidArgument) as exc:
        logger.error(f"Comparison aborted: {exc}")
        return 1

    if result.comparison is not None:
        print(render_comparison(result.reduced_comparison if result.reduced_comparison is not None else result.comparison))
    for outcome in result.failed_models:
        print(f"{outcome.label}: failed during {outcome.stage} ({outcome.error})", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
