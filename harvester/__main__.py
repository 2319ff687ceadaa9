#!/usr/bin/env python3
"""
Command-line entry point
========================
Harvest one or more favorites pages, or capture the session first.

    python -m harvester URL [URL ...] [--out PATH] [--delay-min MS] [--delay-max MS]
    python -m harvester --bootstrap [--validate-auth] [--favorites URL] [--wait S]

All configuration flows through ``HarvestRunConfig``.

Exit status: 0 success (an empty result included), 1 run-level failure,
2 run aborted during a challenge pause.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from .auth.session_bootstrap import DEFAULT_FAVORITES_URL, bootstrap_session
from .errors import EXIT_FAILURE, EXIT_OK, HarvestError
from .pipeline import HarvestPipeline
from .run_config import HarvestRunConfig

logger = logging.getLogger(__name__)


def _non_negative_int(value: str) -> int:
    try:
        number = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number < 0:
        raise argparse.ArgumentTypeError("must be a non-negative integer")
    return number


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    rc = HarvestRunConfig()  # canonical defaults
    parser = argparse.ArgumentParser(
        prog="harvester",
        description="Harvest listing records from favorites pages.",
    )
    parser.add_argument("urls", nargs="*", help="Favorites (collection) URLs")
    parser.add_argument("--out", help="Extra JSON output path")
    parser.add_argument("--delay-min", type=_non_negative_int, default=rc.delay_min_ms,
                        help="Minimum politeness delay in ms (default: %(default)s)")
    parser.add_argument("--delay-max", type=_non_negative_int, default=rc.delay_max_ms,
                        help="Maximum politeness delay in ms (default: %(default)s)")
    parser.add_argument("--concurrency", type=_positive_int, default=rc.concurrency,
                        help="Detail pages extracted at once (default: %(default)s)")
    parser.add_argument("--state-file", default=rc.state_path,
                        help="Session snapshot path (default: %(default)s)")
    parser.add_argument("--output-dir", default=rc.output_dir,
                        help="Directory for output.json, output.csv, errors.log")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    boot = parser.add_argument_group("session bootstrap")
    boot.add_argument("--bootstrap", action="store_true",
                      help="Open a visible browser to sign in and save the session")
    boot.add_argument("--validate-auth", action="store_true",
                      help="Confirm the favorites page loads before saving")
    boot.add_argument("--favorites", default=DEFAULT_FAVORITES_URL,
                      help="Favorites URL used by --validate-auth")
    boot.add_argument("--wait", type=_positive_int, default=60,
                      help="Seconds to wait for manual sign-in (default: %(default)s)")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S',
    )


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.bootstrap:
        ok = asyncio.run(bootstrap_session(
            args.state_file,
            validate_auth=args.validate_auth,
            favorites_url=args.favorites,
            wait_seconds=args.wait,
        ))
        return EXIT_OK if ok else EXIT_FAILURE

    try:
        cfg = HarvestRunConfig.from_cli_args(args)
        result = HarvestPipeline(cfg).run()
    except HarvestError as e:
        logger.error(str(e))
        return e.exit_code
    except Exception as e:
        logger.error(f"Scraping failed: {e}", exc_info=True)
        return EXIT_FAILURE

    json_path = result.outputs.get("json")
    if json_path:
        print(f"Scraped {len(result.records)} listing(s). JSON: {os.path.relpath(json_path)}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
