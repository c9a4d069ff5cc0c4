"""Command-line interface for StakeScope.

Provides commands for collecting validator telemetry and inspecting the store.

Usage:
    stakescope init-db
    stakescope collect
    stakescope fetch-all --format json
    stakescope validators --limit 20
"""

import argparse
import asyncio
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from stakescope import __version__
from stakescope.config import Settings, settings
from stakescope.errors import ConfigurationError
from stakescope.pipeline.orchestrator import (
    MODE_FETCH_ALL,
    Orchestrator,
    PipelineRunResult,
    build_cache,
    build_client,
)
from stakescope.pipeline.sources import (
    LayeredSource,
    RemoteSource,
    SourceResult,
    SourceUnavailableError,
    StoreSource,
    SyntheticSource,
)
from stakescope.storage.database import Database

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=1)


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser with all commands and arguments.
    """
    parser = argparse.ArgumentParser(
        prog="stakescope",
        description="StakeScope — Solana validator telemetry pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stakescope init-db
  stakescope collect
  stakescope fetch-all --format json
  stakescope validators --limit 20

Configuration comes from environment variables / .env (RPC_URL, DATABASE_URL, ...).
        """,
    )
    parser.add_argument(
        "--rpc-url",
        type=str,
        default=None,
        help="Override RPC_URL",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("collect", "Snapshot, score and store the validator set"),
        ("fetch-all", "collect plus rewards, metadata, stake state and predictions"),
    ):
        run_parser = subparsers.add_parser(name, help=help_text, description=help_text)
        run_parser.add_argument(
            "--format",
            type=str,
            choices=["text", "json"],
            default="text",
            help="Output format (default: text)",
        )

    validators_parser = subparsers.add_parser(
        "validators",
        help="List validators by stake",
        description="List validators from the store, falling back to RPC, then synthetic data",
    )
    validators_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Number of validators to show (default: 50)",
    )
    validators_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    validators_parser.add_argument(
        "--no-synthetic",
        action="store_true",
        help="Fail instead of falling back to synthetic data",
    )

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("version", help="Show version information")

    return parser


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context.

    Spins up a new event loop in a dedicated thread to avoid conflicts
    with any existing event loop.
    """
    def _target():
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()

    future = _executor.submit(_target)
    return future.result()


def load_settings(args: argparse.Namespace) -> Settings:
    """Global settings with command-line overrides applied (and validated)."""
    overrides = {}
    if getattr(args, "rpc_url", None):
        overrides["rpc_url"] = args.rpc_url
    if getattr(args, "database_url", None):
        overrides["database_url"] = args.database_url
    if not overrides:
        return settings
    try:
        return Settings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


async def run_pipeline(cfg: Settings, mode: str) -> PipelineRunResult:
    """Open store and client, run one pipeline pass, clean up."""
    database = Database(cfg.database_url)
    try:
        await asyncio.to_thread(database.create_all)
        cache = build_cache(cfg, database)
        async with build_client(cfg, cache) as client:
            orchestrator = Orchestrator(client, database, settings=cfg)
            if mode == MODE_FETCH_ALL:
                return await orchestrator.fetch_all()
            return await orchestrator.collect()
    finally:
        database.dispose()


async def load_validators(cfg: Settings, limit: int, synthetic: bool = True) -> SourceResult:
    database = Database(cfg.database_url)
    try:
        await asyncio.to_thread(database.create_all)
        async with build_client(cfg) as client:
            sources = [StoreSource(database), RemoteSource(client)]
            if synthetic:
                sources.append(SyntheticSource())
            return await LayeredSource(sources).load(limit)
    finally:
        database.dispose()


def format_run(result: PipelineRunResult) -> str:
    status = "OK" if result.success else "FAILED"
    if result.partial:
        status = "PARTIAL"
    lines = [
        f"{result.mode}: {status}",
        f"  Epoch:        {result.epoch if result.epoch is not None else 'N/A'}",
        f"  Validators:   {result.validators_processed}",
        f"  Records:      {result.records_stored}/{result.records_attempted} stored, "
        f"{result.records_failed} failed",
        f"  Fetch errors: {result.fetch_failures}",
        f"  Duration:     {result.duration_seconds:.1f}s",
    ]
    if result.timed_out:
        lines.append("  Run budget spent before all fetches finished")
    for name, sync in result.tables.items():
        lines.append(f"    {name:<18} {sync.stored}/{sync.attempted}")
    for error in result.errors:
        lines.append(f"  ! {error}")
    return "\n".join(lines)


def format_validators(result: SourceResult) -> str:
    lines = [f"Source: {result.source}", ""]
    lines.append(
        f"{'Name':<28} {'Stake (SOL)':>14} {'Comm':>5} {'Perf':>6} {'Risk':>6} {'APY%':>6}"
    )
    for v in result.validators:
        name = (v.name or v.vote_pubkey[:8])[:27]
        flag = " *" if v.delinquent else ""
        lines.append(
            f"{name:<28} {v.stake_sol:>14,.0f} {v.commission:>4}% "
            f"{v.performance_score or 0:>6.1f} {v.risk_score or 0:>6.1f} {v.apy or 0:>6.2f}{flag}"
        )
    if any(v.delinquent for v in result.validators):
        lines.append("")
        lines.append("* delinquent")
    return "\n".join(lines)


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the collect / fetch-all commands.

    Returns:
        Exit code (0 for success, 2 for configuration errors, 1 otherwise)
    """
    try:
        cfg = load_settings(args)
        logger.info("Running %s", args.command)
        result = _run_async(run_pipeline(cfg, args.command))

        if args.format == "json":
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(format_run(result))

        return 0 if result.success else 1

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Run failed: %s", e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_validators(args: argparse.Namespace) -> int:
    try:
        cfg = load_settings(args)
        result = _run_async(load_validators(cfg, args.limit, synthetic=not args.no_synthetic))

        if args.format == "json":
            payload = {
                "source": result.source,
                "validators": [v.to_dict() for v in result.validators],
            }
            print(json.dumps(payload, indent=2))
        else:
            print(format_validators(result))
        return 0

    except SourceUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Listing failed: %s", e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_init_db(args: argparse.Namespace) -> int:
    try:
        cfg = load_settings(args)
        database = Database(cfg.database_url)
        try:
            database.create_all()
        finally:
            database.dispose()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except SQLAlchemyError as e:
        logger.error("Table creation failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Tables created in {database.engine.url.render_as_string(hide_password=True)}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Execute the version command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    print(f"StakeScope v{__version__}")
    print("Solana validator telemetry pipeline")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = create_parser()
    args = parser.parse_args(argv)

    # Route to command handler
    if args.command in ("collect", "fetch-all"):
        return cmd_run(args)
    elif args.command == "validators":
        return cmd_validators(args)
    elif args.command == "init-db":
        return cmd_init_db(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        # No command specified
        parser.print_help()
        return 0


def cli_entry() -> None:
    """Console script entry point for setuptools."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
