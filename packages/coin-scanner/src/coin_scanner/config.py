#!/usr/bin/env python3
"""Configuration management for the coin scanner.

This module provides type-safe configuration dataclasses with validation
for the RPC gateway, the block range scanner and the metadata resolver.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)

# Coin factory on Base mainnet
DEFAULT_FACTORY_ADDRESS = "0x777777751622c0d3258f214F9DF38E35BF45baF3"

# Platform referrer the marketplace tags its coins with
DEFAULT_PLATFORM_REFERRER = "0x32C8ACD3118766CBE5c3E45a44BCEDde953EF627"

DEFAULT_RPC_URL = "https://mainnet.base.org"
DEFAULT_START_BLOCK = 30146328

DEFAULT_IPFS_GATEWAYS = (
    "https://gateway.pinata.cloud/ipfs/",
    "https://ipfs.io/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://dweb.link/ipfs/",
)


def _validate_http_url(url: str, env_name: str) -> None:
    if not url:
        raise ValueError(f"URL is required ({env_name})")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid URL scheme for {env_name}: {parsed.scheme or '<none>'}. "
            "Expected http or https"
        )
    if not parsed.netloc:
        raise ValueError(f"Invalid URL for {env_name}: {url}")


def _checksum(address: str, env_name: str) -> str:
    if not address:
        raise ValueError(f"Address is required ({env_name})")
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address for {env_name}: {address}")
    return Web3.to_checksum_address(address)


def _split_list(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True, slots=True)
class RpcConfig:
    """Configuration for the RPC gateway.

    Attributes:
        primary_url: Primary JSON-RPC endpoint
        fallback_urls: Endpoints tried in order when the primary fails
        request_timeout: Per-call timeout in seconds
        logs_timeout: Per-call timeout for eth_getLogs in seconds
        response_ttl: Response cache lifetime in seconds
        rate_limit: Maximum requests per minute
    """

    primary_url: str = DEFAULT_RPC_URL
    fallback_urls: tuple[str, ...] = (DEFAULT_RPC_URL,)
    request_timeout: float = 10.0
    logs_timeout: float = 15.0
    response_ttl: float = 30.0
    rate_limit: int = 100_000

    def __post_init__(self) -> None:
        """Validate gateway configuration."""
        object.__setattr__(self, "primary_url", self.primary_url.strip())
        object.__setattr__(
            self, "fallback_urls", tuple(url.strip() for url in self.fallback_urls)
        )

        _validate_http_url(self.primary_url, "BASE_RPC_URL")
        for url in self.fallback_urls:
            _validate_http_url(url, "FALLBACK_RPC_URLS")

        if self.request_timeout <= 0 or self.logs_timeout <= 0:
            raise ValueError("RPC timeouts must be positive")
        if self.response_ttl <= 0:
            raise ValueError(f"Response cache TTL must be positive, got {self.response_ttl}")
        if self.rate_limit <= 0:
            raise ValueError(f"Rate limit must be positive, got {self.rate_limit}")

    @property
    def endpoints(self) -> tuple[str, ...]:
        """Primary endpoint followed by the fallbacks."""
        return (self.primary_url, *self.fallback_urls)


@dataclass(frozen=True, slots=True)
class ScanConfig:
    """Configuration for the block range scanner.

    Attributes:
        factory_address: Checksummed address of the coin factory
        platform_referrer: Indexed referrer value the scan filters on
        start_block: First block of the scan
        known_blocks: Blocks known to contain coins, probed first
        window_size: Maximum blocks per getLogs window
        parallel_batches: Concurrent window queries per group
        range_ttl: Range cache lifetime in seconds
        batch_delay: Pause between dispatching window groups
        known_block_delay: Pause between known-window probes
        retry_count: Whole-scan retries after the first attempt
        retry_base_delay: First scan retry delay in seconds
    """

    factory_address: str = DEFAULT_FACTORY_ADDRESS
    platform_referrer: str = DEFAULT_PLATFORM_REFERRER
    start_block: int = DEFAULT_START_BLOCK
    known_blocks: tuple[int, ...] = (DEFAULT_START_BLOCK,)
    window_size: int = 950
    parallel_batches: int = 3
    range_ttl: float = 300.0
    batch_delay: float = 0.1
    known_block_delay: float = 0.2
    retry_count: int = 3
    retry_base_delay: float = 1.0

    MAX_WINDOW_SIZE: ClassVar[int] = 10_000

    def __post_init__(self) -> None:
        """Validate scanner configuration."""
        object.__setattr__(
            self, "factory_address", _checksum(self.factory_address, "FACTORY_ADDRESS")
        )
        object.__setattr__(
            self, "platform_referrer", _checksum(self.platform_referrer, "PLATFORM_REFERRER")
        )

        if self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")
        if any(block < 0 for block in self.known_blocks):
            raise ValueError("Known coin blocks must be non-negative")

        if not 1 <= self.window_size <= self.MAX_WINDOW_SIZE:
            raise ValueError(
                f"Window size must be between 1 and {self.MAX_WINDOW_SIZE}, got {self.window_size}"
            )
        if not 1 <= self.parallel_batches <= 20:
            raise ValueError(
                f"Parallel batches must be between 1 and 20, got {self.parallel_batches}"
            )
        if self.range_ttl <= 0:
            raise ValueError(f"Range cache TTL must be positive, got {self.range_ttl}")
        if self.batch_delay < 0 or self.known_block_delay < 0:
            raise ValueError("Scan delays must be non-negative")
        if not 0 <= self.retry_count <= 10:
            raise ValueError(f"Retry count must be between 0 and 10, got {self.retry_count}")
        if self.retry_base_delay < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.retry_base_delay}")


@dataclass(frozen=True, slots=True)
class MetadataConfig:
    """Configuration for off-chain metadata resolution."""
    gateways: tuple[str, ...] = DEFAULT_IPFS_GATEWAYS
    max_attempts: int = 5
    base_delay: float = 1.0
    request_timeout: float = 15.0
    max_concurrent_fetches: int = 10
    cache_size: int = 1000
    default_cover_art: str = "/examples/default-cover.jpg"

    def __post_init__(self) -> None:
        """Validate metadata configuration."""
        if not self.gateways:
            raise ValueError("At least one IPFS gateway is required (IPFS_GATEWAYS)")
        for gateway in self.gateways:
            _validate_http_url(gateway, "IPFS_GATEWAYS")

        # Gateways are used as prefixes, so they must end with a slash
        object.__setattr__(
            self,
            "gateways",
            tuple(g if g.endswith("/") else g + "/" for g in self.gateways),
        )

        if not 1 <= self.max_attempts <= 10:
            raise ValueError(
                f"Metadata attempts must be between 1 and 10, got {self.max_attempts}"
            )
        if self.request_timeout <= 0:
            raise ValueError(f"Metadata timeout must be positive, got {self.request_timeout}")
        if self.max_concurrent_fetches <= 0:
            raise ValueError("Concurrent metadata fetches must be positive")


@dataclass(frozen=True, slots=True)
class ScannerConfig:
    """Main configuration for the coin scanner service."""

    rpc: RpcConfig = field(default_factory=RpcConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables.

        Returns:
            ScannerConfig instance with loaded values

        Raises:
            ValueError: If environment variables are invalid
        """
        env = os.environ

        fallback_urls = _split_list(env.get("FALLBACK_RPC_URLS")) or (DEFAULT_RPC_URL,)
        rpc_config = RpcConfig(
            primary_url=env.get("BASE_RPC_URL", DEFAULT_RPC_URL),
            fallback_urls=fallback_urls,
            request_timeout=float(env.get("RPC_TIMEOUT", "10")),
            logs_timeout=float(env.get("RPC_LOGS_TIMEOUT", "15")),
            response_ttl=float(env.get("RESPONSE_CACHE_TTL", "30")),
            rate_limit=int(env.get("RATE_LIMIT_PER_MINUTE", "100000")),
        )

        start_block = int(env.get("START_BLOCK", str(DEFAULT_START_BLOCK)))
        known_raw = env.get("KNOWN_COIN_BLOCKS")
        known_blocks = (
            tuple(int(block) for block in _split_list(known_raw))
            if known_raw is not None
            else (DEFAULT_START_BLOCK,)
        )
        scan_config = ScanConfig(
            factory_address=env.get("FACTORY_ADDRESS", DEFAULT_FACTORY_ADDRESS),
            platform_referrer=env.get("PLATFORM_REFERRER", DEFAULT_PLATFORM_REFERRER),
            start_block=start_block,
            known_blocks=known_blocks,
            window_size=int(env.get("WINDOW_SIZE", "950")),
            parallel_batches=int(env.get("PARALLEL_BATCHES", "3")),
            range_ttl=float(env.get("RANGE_CACHE_TTL", "300")),
            retry_count=int(env.get("SCAN_RETRY_COUNT", "3")),
            retry_base_delay=float(env.get("SCAN_RETRY_BASE_DELAY", "1")),
        )

        metadata_config = MetadataConfig(
            gateways=_split_list(env.get("IPFS_GATEWAYS")) or DEFAULT_IPFS_GATEWAYS,
            max_attempts=int(env.get("METADATA_MAX_ATTEMPTS", "5")),
        )

        return cls(rpc=rpc_config, scan=scan_config, metadata=metadata_config)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Coin Scanner Configuration")
        logger.info("=" * 60)

        logger.info("RPC Gateway:")
        logger.info(f"  Primary: {self.rpc.primary_url}")
        logger.info(f"  Fallbacks: {', '.join(self.rpc.fallback_urls) or '[NONE]'}")
        logger.info(f"  Timeouts: {self.rpc.request_timeout}s / {self.rpc.logs_timeout}s (getLogs)")
        logger.info(f"  Response Cache TTL: {self.rpc.response_ttl}s")
        logger.info(f"  Rate Limit: {self.rpc.rate_limit}/min")

        logger.info("Scanner:")
        logger.info(f"  Factory: {self.scan.factory_address}")
        logger.info(f"  Platform Referrer: {self.scan.platform_referrer}")
        logger.info(f"  Start Block: {self.scan.start_block}")
        logger.info(f"  Known Blocks: {list(self.scan.known_blocks)}")
        logger.info(f"  Window Size: {self.scan.window_size}")
        logger.info(f"  Parallel Batches: {self.scan.parallel_batches}")
        logger.info(f"  Range Cache TTL: {self.scan.range_ttl}s")
        logger.info(f"  Retries: {self.scan.retry_count} (base delay {self.scan.retry_base_delay}s)")

        logger.info("Metadata:")
        logger.info(f"  Gateways: {len(self.metadata.gateways)}")
        logger.info(f"  Max Attempts: {self.metadata.max_attempts}")

        logger.info("=" * 60)
