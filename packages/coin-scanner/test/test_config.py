#!/usr/bin/env python3
"""Tests for the configuration module."""

import os
from unittest.mock import patch

import pytest

from coin_scanner.config import (
    DEFAULT_FACTORY_ADDRESS,
    DEFAULT_START_BLOCK,
    MetadataConfig,
    RpcConfig,
    ScanConfig,
    ScannerConfig,
)


class TestRpcConfig:
    """Tests for RpcConfig."""

    def test_defaults(self):
        config = RpcConfig()
        assert config.request_timeout == 10.0
        assert config.logs_timeout == 15.0
        assert config.response_ttl == 30.0
        assert config.rate_limit == 100_000

    def test_endpoints_order(self):
        """The primary endpoint is tried before the fallbacks."""
        config = RpcConfig(
            primary_url=" https://primary.rpc ",
            fallback_urls=("https://one.rpc", "https://two.rpc"),
        )
        assert config.endpoints == ("https://primary.rpc", "https://one.rpc", "https://two.rpc")

    def test_invalid_url_scheme(self):
        with pytest.raises(ValueError, match="Invalid URL scheme for BASE_RPC_URL"):
            RpcConfig(primary_url="ftp://invalid.scheme")

    def test_missing_url(self):
        with pytest.raises(ValueError, match="URL is required"):
            RpcConfig(primary_url="   ")

    def test_invalid_fallback(self):
        with pytest.raises(ValueError, match="FALLBACK_RPC_URLS"):
            RpcConfig(fallback_urls=("not-a-url",))

    def test_invalid_rate_limit(self):
        with pytest.raises(ValueError, match="Rate limit must be positive"):
            RpcConfig(rate_limit=0)


class TestScanConfig:
    """Tests for ScanConfig."""

    def test_checksum_address_conversion(self):
        """Addresses are converted to checksum format."""
        config = ScanConfig(factory_address=DEFAULT_FACTORY_ADDRESS.lower())
        assert config.factory_address == DEFAULT_FACTORY_ADDRESS

    def test_invalid_factory_address(self):
        with pytest.raises(ValueError, match="Invalid address for FACTORY_ADDRESS"):
            ScanConfig(factory_address="invalid-address")

    def test_missing_referrer(self):
        with pytest.raises(ValueError, match="Address is required"):
            ScanConfig(platform_referrer="")

    @pytest.mark.parametrize("window_size", [0, -1, 10_001])
    def test_window_size_bounds(self, window_size):
        with pytest.raises(ValueError, match="Window size"):
            ScanConfig(window_size=window_size)

    @pytest.mark.parametrize("parallel_batches", [0, 21])
    def test_parallel_batches_bounds(self, parallel_batches):
        with pytest.raises(ValueError, match="Parallel batches"):
            ScanConfig(parallel_batches=parallel_batches)

    def test_negative_known_block(self):
        with pytest.raises(ValueError, match="Known coin blocks"):
            ScanConfig(known_blocks=(-5,))


class TestMetadataConfig:
    def test_gateway_trailing_slash(self):
        config = MetadataConfig(gateways=("https://ipfs.io/ipfs",))
        assert config.gateways == ("https://ipfs.io/ipfs/",)

    def test_requires_a_gateway(self):
        with pytest.raises(ValueError, match="At least one IPFS gateway"):
            MetadataConfig(gateways=())

    def test_attempt_bounds(self):
        with pytest.raises(ValueError, match="Metadata attempts"):
            MetadataConfig(max_attempts=0)


class TestScannerConfig:
    """Tests for loading ScannerConfig from the environment."""

    def test_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = ScannerConfig.from_env()

        assert config.scan.start_block == DEFAULT_START_BLOCK
        assert config.scan.known_blocks == (DEFAULT_START_BLOCK,)
        assert config.scan.window_size == 950
        assert config.scan.parallel_batches == 3
        assert config.metadata.max_attempts == 5
        assert len(config.metadata.gateways) == 4

    def test_from_env_overrides(self):
        env = {
            "BASE_RPC_URL": "https://primary.rpc",
            "FALLBACK_RPC_URLS": "https://one.rpc, https://two.rpc",
            "START_BLOCK": "100",
            "KNOWN_COIN_BLOCKS": "150,300",
            "WINDOW_SIZE": "500",
            "PARALLEL_BATCHES": "5",
            "IPFS_GATEWAYS": "https://gw.test/ipfs/",
            "RATE_LIMIT_PER_MINUTE": "60",
        }
        with patch.dict(os.environ, env, clear=True):
            config = ScannerConfig.from_env()

        assert config.rpc.endpoints == ("https://primary.rpc", "https://one.rpc", "https://two.rpc")
        assert config.rpc.rate_limit == 60
        assert config.scan.start_block == 100
        assert config.scan.known_blocks == (150, 300)
        assert config.scan.window_size == 500
        assert config.scan.parallel_batches == 5
        assert config.metadata.gateways == ("https://gw.test/ipfs/",)

    def test_empty_known_blocks(self):
        """An empty KNOWN_COIN_BLOCKS disables the known-window pass."""
        with patch.dict(os.environ, {"KNOWN_COIN_BLOCKS": ""}, clear=True):
            config = ScannerConfig.from_env()
        assert config.scan.known_blocks == ()

    def test_invalid_integer(self):
        with patch.dict(os.environ, {"WINDOW_SIZE": "lots"}, clear=True):
            with pytest.raises(ValueError):
                ScannerConfig.from_env()

    def test_log_config(self, caplog):
        with caplog.at_level("INFO"):
            ScannerConfig().log_config()
        assert "Coin Scanner Configuration" in caplog.text
        assert "Window Size: 950" in caplog.text
