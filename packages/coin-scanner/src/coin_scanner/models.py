#!/usr/bin/env python3
"""Data models for the coin scanner.

This module provides immutable data classes for JSON-RPC requests and
responses, block ranges, raw ledger logs and the decoded coin records that
flow through the ingestion pipeline.
"""

import json
import time
from dataclasses import dataclass, field, replace
from typing import Any

# JSON-RPC error codes used by the gateway
RATE_LIMITED = -32000
INVALID_REQUEST = -32600
INTERNAL_ERROR = -32603

UNKNOWN_ARTIST = "Unknown Artist"


@dataclass(frozen=True, slots=True)
class RpcRequest:
    """A single JSON-RPC call as sent over the wire.

    Attributes:
        method: JSON-RPC method name
        params: Ordered parameter list
        id: Request id, monotonically increasing per gateway
    """

    method: str
    params: tuple[Any, ...] = ()
    id: int | str | None = None

    @property
    def fingerprint(self) -> str:
        """Deterministic cache key built from method and params (id excluded)."""
        return json.dumps(
            [self.method, list(self.params)],
            sort_keys=True,
            separators=(",", ":"),
        )

    def to_payload(self) -> dict[str, Any]:
        """Encode as a JSON-RPC request body."""
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": list(self.params),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcRequest":
        """Decode a JSON-RPC request body.

        Raises:
            ValueError: If the payload is not a JSON-RPC request object
        """
        if not isinstance(payload, dict):
            raise ValueError("JSON-RPC request must be an object")

        method = payload.get("method")
        if not isinstance(method, str) or not method:
            raise ValueError("JSON-RPC request is missing a method")

        params = payload.get("params", [])
        if params is None:
            params = []
        if not isinstance(params, list):
            raise ValueError("JSON-RPC params must be a list")

        return cls(method=method, params=tuple(params), id=payload.get("id"))


@dataclass(frozen=True, slots=True)
class BlockNumberRequest:
    """Typed eth_blockNumber request."""

    METHOD = "eth_blockNumber"

    def to_rpc(self, request_id: int) -> RpcRequest:
        return RpcRequest(method=self.METHOD, params=(), id=request_id)


@dataclass(frozen=True, slots=True)
class GetLogsRequest:
    """Typed eth_getLogs request for a single contract and block window.

    Attributes:
        address: Contract address emitting the logs
        topics: Topic filter; None entries match any value
        from_block: First block of the window (inclusive)
        to_block: Last block of the window (inclusive)
    """

    METHOD = "eth_getLogs"

    address: str
    topics: tuple[str | None, ...]
    from_block: int
    to_block: int

    def to_rpc(self, request_id: int) -> RpcRequest:
        log_filter = {
            "address": self.address,
            "topics": list(self.topics),
            "fromBlock": hex(self.from_block),
            "toBlock": hex(self.to_block),
        }
        return RpcRequest(method=self.METHOD, params=(log_filter,), id=request_id)


@dataclass(frozen=True, slots=True)
class RpcError:
    """Structured JSON-RPC error."""

    code: int
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass(frozen=True, slots=True)
class RpcResponse:
    """Outcome of a gateway call: either a result or a typed error.

    Attributes:
        id: Id of the request this answers
        result: Result payload when the call succeeded
        error: Error when the call failed
        from_cache: Whether the result was served from the response cache
    """

    id: int | str | None
    result: Any = None
    error: RpcError | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON-RPC response envelope."""
        if self.error is not None:
            return {"jsonrpc": "2.0", "id": self.id, "error": self.error.to_dict()}
        return {"jsonrpc": "2.0", "id": self.id, "result": self.result}


@dataclass(frozen=True, slots=True, order=True)
class BlockRange:
    """Inclusive block window used as a getLogs range and a cache key."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < 0:
            raise ValueError(f"Block range must be non-negative, got {self.start}-{self.end}")
        if self.start > self.end:
            raise ValueError(f"Block range start {self.start} is after end {self.end}")

    @property
    def width(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def _quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string or int)."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Invalid quantity: {value!r}")


@dataclass(frozen=True, slots=True)
class RawLog:
    """One ledger log entry as returned by eth_getLogs.

    Attributes:
        address: Address of the emitting contract
        topics: Topic list, topic0 being the event signature hash
        data: Hex-encoded non-indexed arguments
        block_number: Block the log was emitted in
        log_index: Position of the log inside the block
        transaction_hash: Hash of the emitting transaction
    """

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    log_index: int
    transaction_hash: str = ""

    @property
    def unique_key(self) -> tuple[int, int]:
        """Ledger position, used to de-duplicate logs across windows."""
        return (self.block_number, self.log_index)

    @classmethod
    def from_rpc(cls, entry: dict[str, Any]) -> "RawLog":
        """Build a RawLog from a JSON-RPC log object.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        try:
            topics = entry["topics"]
            if not isinstance(topics, list):
                raise ValueError("topics must be a list")
            return cls(
                address=str(entry["address"]),
                topics=tuple(str(topic) for topic in topics),
                data=str(entry.get("data") or "0x"),
                block_number=_quantity(entry["blockNumber"]),
                log_index=_quantity(entry["logIndex"]),
                transaction_hash=str(entry.get("transactionHash") or ""),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed log entry: {e}") from e


@dataclass(frozen=True, slots=True)
class CoinCreatedEvent:
    """Decoded CoinCreated event emitted by the coin factory."""

    creator: str
    payout_recipient: str
    platform_referrer: str
    currency: str
    coin_address: str
    pool: str
    name: str
    symbol: str
    uri: str
    version: str
    block_number: int
    log_index: int = 0
    transaction_hash: str = ""

    def __str__(self) -> str:
        return (
            f"CoinCreatedEvent(coin={self.coin_address}, "
            f"symbol={self.symbol}, block={self.block_number})"
        )


@dataclass(frozen=True, slots=True)
class TrackMetadata:
    """Descriptive fields read from an off-chain metadata document."""

    description: str = ""
    artist_name: str = ""
    image: str = ""
    animation_url: str = ""
    attributes: tuple[dict[str, Any], ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MusicCoin:
    """A published coin record, enriched with metadata when available."""

    coin_address: str
    name: str
    symbol: str
    description: str
    artist_name: str
    artist_address: str
    creator: str
    cover_art: str
    audio_url: str
    metadata_uri: str
    block_number: int
    metadata: dict[str, Any] | None = None

    @property
    def is_complete(self) -> bool:
        """True when no descriptive field is empty."""
        return all((
            self.name,
            self.symbol,
            self.description,
            self.artist_name and self.artist_name != UNKNOWN_ARTIST,
            self.audio_url,
            self.metadata is not None,
        ))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "coinAddress": self.coin_address,
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "artistName": self.artist_name,
            "artistAddress": self.artist_address,
            "creator": self.creator,
            "coverArt": self.cover_art,
            "audioUrl": self.audio_url,
            "metadataUri": self.metadata_uri,
            "blockNumber": self.block_number,
            "metadata": self.metadata,
        }


@dataclass(frozen=True, slots=True)
class ScanStatus:
    """Status tuple published to UI collaborators."""

    loading: bool = False
    error: str | None = None
    progress_message: str | None = None
    generation: int = 0
    updated_at: float = field(default_factory=time.time)

    def evolve(self, **changes: Any) -> "ScanStatus":
        """Return a copy with the given fields changed and a fresh timestamp."""
        changes.setdefault("updated_at", time.time())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "loading": self.loading,
            "error": self.error,
            "progressMessage": self.progress_message,
            "generation": self.generation,
            "updatedAt": self.updated_at,
        }
