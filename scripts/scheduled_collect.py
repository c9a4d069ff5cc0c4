#!/usr/bin/env python3
"""StakeScope — Scheduled Collection Runner.

Runs one pipeline pass (collect or fetch-all), or keeps running them at a
fixed interval. Designed to be called from cron, or left running under a
process supervisor with --interval.

Usage:
    python scripts/scheduled_collect.py
    python scripts/scheduled_collect.py --mode fetch-all
    python scripts/scheduled_collect.py --interval 900     # every 15 minutes

Scheduling (collect every 10 minutes, fetch-all once per ~2-day epoch is plenty):
    crontab -e
    */10 * * * * /path/to/stakescope/.venv/bin/python /path/to/stakescope/scripts/scheduled_collect.py >> /path/to/stakescope/logs/cron.log 2>&1
    15 3 * * *   /path/to/stakescope/.venv/bin/python /path/to/stakescope/scripts/scheduled_collect.py --mode fetch-all
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from datetime import date
from pathlib import Path

# Ensure project root is on sys.path so 'stakescope' is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

# Load .env before importing stakescope (pydantic-settings reads env at import)
from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from stakescope.cli import load_settings, run_pipeline  # noqa: E402
from stakescope.config import settings  # noqa: E402
from stakescope.errors import ConfigurationError  # noqa: E402
from stakescope.pipeline.orchestrator import (  # noqa: E402
    MODE_COLLECT,
    MODE_FETCH_ALL,
    PipelineRunResult,
)


def setup_logging(log_dir: Path) -> None:
    """Configure logging to both console and a daily log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"collect_{date.today().isoformat()}.log"

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def save_result(result: PipelineRunResult, output_dir: Path) -> Path:
    """Save the run summary as JSON for inspection."""
    output_dir.mkdir(parents=True, exist_ok=True)
    stamp = time.strftime("%Y%m%dT%H%M%S")
    output_file = output_dir / f"{result.mode}_{stamp}.json"

    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, default=str)

    logging.getLogger(__name__).info("Run summary saved to %s", output_file)
    return output_file


def run_once(args: argparse.Namespace) -> int:
    """One pipeline pass. Returns the process exit code for that pass."""
    logger = logging.getLogger(__name__)
    cfg = load_settings(args)

    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(run_pipeline(cfg, args.mode))
    finally:
        loop.close()

    logger.info("=" * 60)
    logger.info(
        "StakeScope %s — epoch %s: %s%s",
        result.mode,
        result.epoch if result.epoch is not None else "N/A",
        "OK" if result.success else "FAILED",
        " (partial)" if result.partial else "",
    )
    logger.info(
        "  validators=%d stored=%d/%d failed=%d fetch_failures=%d",
        result.validators_processed, result.records_stored,
        result.records_attempted, result.records_failed, result.fetch_failures,
    )
    for error in result.errors:
        logger.info("  ! %s", error)
    logger.info("=" * 60)

    if args.output_dir:
        save_result(result, Path(args.output_dir))
    return 0 if result.success else 1


def run_pass(args: argparse.Namespace) -> int:
    """run_once, with an unexpected failure logged and reported as exit code 1.

    ConfigurationError propagates: no later pass can succeed either.
    """
    try:
        return run_once(args)
    except ConfigurationError:
        raise
    except Exception as e:
        logging.getLogger(__name__).error("Scheduled run failed: %s", e, exc_info=True)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the scheduled runner."""
    parser = argparse.ArgumentParser(
        description="StakeScope — scheduled validator collection",
    )
    parser.add_argument(
        "--mode",
        choices=[MODE_COLLECT, MODE_FETCH_ALL],
        default=MODE_COLLECT,
        help="Pipeline mode (default: collect)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0,
        help="Seconds between runs; 0 runs once and exits (default: 0)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Directory for JSON run summaries (default: none)",
    )
    parser.add_argument("--rpc-url", type=str, default=None, help="Override RPC_URL")
    parser.add_argument("--database-url", type=str, default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)

    setup_logging(PROJECT_ROOT / "logs")
    logger = logging.getLogger(__name__)

    logger.info("Starting StakeScope scheduled run")
    logger.info("  Mode: %s", args.mode)
    logger.info("  Interval: %s", f"{args.interval:.0f}s" if args.interval else "once")

    try:
        while True:
            started = time.monotonic()
            exit_code = run_pass(args)
            if not args.interval:
                return exit_code

            wait = max(0.0, args.interval - (time.monotonic() - started))
            logger.info("Next run in %.0fs", wait)
            time.sleep(wait)

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
