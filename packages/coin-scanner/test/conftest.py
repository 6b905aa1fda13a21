"""Shared fixtures for coin scanner tests."""

import asyncio

import pytest
from eth_abi import encode
from web3 import Web3

from coin_scanner.config import MetadataConfig, RpcConfig, ScanConfig
from coin_scanner.event_decoder import address_topic, coin_created_topic
from coin_scanner.gateway import RpcCallError
from coin_scanner.models import INTERNAL_ERROR, RpcError

FACTORY = Web3.to_checksum_address("0x777777751622c0d3258f214F9DF38E35BF45baF3")
REFERRER = Web3.to_checksum_address("0x32C8ACD3118766CBE5c3E45a44BCEDde953EF627")
CREATOR = Web3.to_checksum_address("0x742d35Cc6634C0532925a3b844Bc9e7595f0fA99")
ARTIST = Web3.to_checksum_address("0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d")
CURRENCY = Web3.to_checksum_address("0x4200000000000000000000000000000000000006")
POOL = Web3.to_checksum_address("0x498581fF718922c3f8e6A244956aF099B2652b2b")


def coin_address(n: int) -> str:
    """Deterministic checksummed token address for test coin n."""
    return Web3.to_checksum_address("0x" + f"{n:040x}".replace("0", "a", 1))


def make_log_entry(
    n: int,
    block_number: int,
    log_index: int = 0,
    uri: str = "",
    name: str | None = None,
    symbol: str | None = None,
) -> dict:
    """Build a JSON-RPC log object for a CoinCreated event."""
    data = encode(
        ["address", "string", "string", "string", "address", "address", "string"],
        [
            CURRENCY,
            uri or f"ipfs://bafybeicoin{n}",
            name or f"Track {n}",
            symbol or f"TRK{n}",
            coin_address(n),
            POOL,
            "v4",
        ],
    )
    return {
        "address": FACTORY.lower(),
        "topics": [
            coin_created_topic(),
            address_topic(CREATOR),
            address_topic(ARTIST),
            address_topic(REFERRER),
        ],
        "data": Web3.to_hex(data),
        "blockNumber": hex(block_number),
        "logIndex": hex(log_index),
        "transactionHash": "0x" + f"{n:064x}",
    }


class FakeGateway:
    """Stands in for GatewayService with scripted block number and logs."""

    def __init__(self, latest_block: int, logs_by_block: dict[int, list[dict]] | None = None):
        self.latest_block = latest_block
        self.logs_by_block = logs_by_block or {}
        self.failing_windows: set[tuple[int, int]] = set()
        self.block_number_failures = 0
        self.log_requests: list[tuple[int, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = 0.0

    async def get_block_number(self) -> int:
        if self.block_number_failures > 0:
            self.block_number_failures -= 1
            raise RpcCallError(RpcError(code=INTERNAL_ERROR, message="All endpoints down"))
        return self.latest_block

    async def get_logs(self, request) -> list[dict]:
        window = (request.from_block, request.to_block)
        self.log_requests.append(window)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if window in self.failing_windows:
                raise RpcCallError(RpcError(code=INTERNAL_ERROR, message="timeout"))
            return [
                entry
                for block, entries in sorted(self.logs_by_block.items())
                if request.from_block <= block <= request.to_block
                for entry in entries
            ]
        finally:
            self.in_flight -= 1


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def rpc_config():
    return RpcConfig(
        primary_url="https://primary.rpc",
        fallback_urls=("https://fallback.rpc",),
    )


@pytest.fixture
def scan_config():
    return ScanConfig(
        factory_address=FACTORY,
        platform_referrer=REFERRER,
        start_block=1000,
        known_blocks=(),
        window_size=950,
        parallel_batches=3,
        batch_delay=0,
        known_block_delay=0,
        retry_base_delay=0,
    )


@pytest.fixture
def metadata_config():
    return MetadataConfig(
        gateways=("https://gw-one.test/ipfs/", "https://gw-two.test/ipfs/"),
        base_delay=0,
    )
