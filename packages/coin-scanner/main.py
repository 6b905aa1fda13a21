#!/usr/bin/env python3
"""Entry point for the coin scanner service.

Runs the HTTP service (RPC proxy plus coin endpoints) with an initial
ingestion in the background, or performs a single ingestion and prints the
coins as JSON.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import uvicorn


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from coin_scanner.config import ScannerConfig
from coin_scanner.event_decoder import EventDecoder
from coin_scanner.gateway import GatewayService
from coin_scanner.ingestion import CoinIngestion
from coin_scanner.metadata import MetadataResolver
from coin_scanner.scanner import BlockRangeScanner
from coin_scanner.server import create_app


def build_components(config: ScannerConfig) -> tuple[GatewayService, CoinIngestion]:
    """Construct the shared gateway and the ingestion facade around it."""
    gateway = GatewayService(config.rpc)
    scanner = BlockRangeScanner(gateway, config.scan)
    resolver = MetadataResolver(config.metadata)
    ingestion = CoinIngestion(
        scanner=scanner,
        resolver=resolver,
        decoder=EventDecoder(),
        scan_config=config.scan,
        metadata_config=config.metadata,
    )
    return gateway, ingestion


async def run_scan(config: ScannerConfig) -> int:
    gateway, ingestion = build_components(config)
    try:
        coins = await ingestion.start()
    finally:
        await ingestion.resolver.aclose()
        await gateway.aclose()

    print(json.dumps([coin.to_dict() for coin in coins], indent=2))
    if ingestion.status.error:
        logger.error(ingestion.status.error)
        return 1
    return 0


async def run_server(config: ScannerConfig, host: str, port: int, log_level: str) -> None:
    gateway, ingestion = build_components(config)
    app = create_app(gateway, ingestion)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
    )

    ingestion.schedule_refresh()
    try:
        await server.serve()
    finally:
        ingestion.cancel()
        await ingestion.resolver.aclose()
        await gateway.aclose()


async def main() -> None:
    """Main entry point for the coin scanner.

    Parses startup arguments, loads configuration from environment,
    and either serves the HTTP API or runs a one-shot scan.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Coin Scanner - Ingest CoinCreated events and serve them over HTTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  BASE_RPC_URL          - Primary RPC endpoint
  FALLBACK_RPC_URLS     - Comma-separated fallback RPC endpoints
  FACTORY_ADDRESS       - Coin factory contract address
  PLATFORM_REFERRER     - Platform referrer to filter coins by
  START_BLOCK           - First block to scan
  KNOWN_COIN_BLOCKS     - Comma-separated blocks probed first
  IPFS_GATEWAYS         - Comma-separated IPFS gateway prefixes
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "scan"],
        help="serve the HTTP API (default) or run a single scan"
    )
    parser.add_argument("--host", default=os.environ.get("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8000")))
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== Coin Scanner Starting ===")

    try:
        config: ScannerConfig = ScannerConfig.from_env()
        config.log_config()
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - BASE_RPC_URL: Primary RPC endpoint")
        logger.error("  - FALLBACK_RPC_URLS: Comma-separated fallback endpoints")
        logger.error("  - FACTORY_ADDRESS / PLATFORM_REFERRER: Valid addresses")
        logger.error("  - START_BLOCK / WINDOW_SIZE / PARALLEL_BATCHES: Integers")
        sys.exit(1)

    try:
        if args.command == "scan":
            sys.exit(await run_scan(config))
        await run_server(config, args.host, args.port, args.log_level)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    asyncio.run(main())
