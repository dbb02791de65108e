"""
Encore - Entry Point

Run with: python -m encore
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from encore import __version__
from encore.config import reload_config
from encore.service import EncoreService


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="encore",
        description="Encore - audio resolution, caching and crossfade engine",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="TOML config file merged over the shipped defaults",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Web host address to bind to (default: from config)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Web port (default: from config)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


async def run_service(args: argparse.Namespace) -> None:
    """Load configuration, then start and run the engine."""
    config = reload_config(args.config)
    if args.host is not None:
        config.web.host = args.host
    if args.port is not None:
        config.web.port = args.port

    service = EncoreService(config)
    await service.run()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)
    logger.info("Starting Encore...")

    try:
        asyncio.run(run_service(args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Encore stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
