#!/usr/bin/env python3
"""Event decoding for CoinCreated logs.

This module turns raw ledger logs emitted by the coin factory into typed
CoinCreatedEvent records. Decoding is pure: malformed logs are dropped with
a warning and never abort a scan.
"""

import logging
from collections.abc import Iterable

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .models import CoinCreatedEvent, RawLog

# Get logger for this module
logger = logging.getLogger(__name__)

COIN_CREATED_SIGNATURE = (
    "CoinCreated(address,address,address,address,string,string,string,address,address,string)"
)

# Non-indexed arguments, in ABI order
COIN_CREATED_DATA_TYPES = ["address", "string", "string", "string", "address", "address", "string"]


def coin_created_topic() -> str:
    """Return topic0 of the CoinCreated event as a 0x-prefixed hex string."""
    return Web3.to_hex(Web3.keccak(text=COIN_CREATED_SIGNATURE))


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic value."""
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def topic_to_address(topic: str) -> str:
    """Read the checksummed address held in the low 20 bytes of a topic."""
    raw = HexBytes(topic)
    if len(raw) != 32:
        raise ValueError(f"Topic must be 32 bytes, got {len(raw)}")
    if any(raw[:12]):
        raise ValueError(f"Topic is not a padded address: {topic}")
    return Web3.to_checksum_address(raw[12:])


class EventDecoder:
    """Decodes CoinCreated logs into domain events.

    Layout of the event:
    - topics[1]: caller (creator), indexed
    - topics[2]: payoutRecipient, indexed
    - topics[3]: platformReferrer, indexed
    - data: currency, uri, name, symbol, coin, pool, version
    """

    def __init__(self) -> None:
        self.topic0 = coin_created_topic()

        # Metrics tracking
        self.events_decoded = 0
        self.events_invalid = 0

    def decode(self, raw_log: RawLog) -> CoinCreatedEvent | None:
        """Decode one log.

        Args:
            raw_log: Log entry returned by the scanner

        Returns:
            CoinCreatedEvent, or None if the log is malformed
        """
        try:
            event = self._decode(raw_log)
        except (ValueError, TypeError, DecodingError) as e:
            self.events_invalid += 1
            logger.warning(
                f"Dropping malformed log at block {raw_log.block_number} "
                f"index {raw_log.log_index}: {e}"
            )
            return None

        self.events_decoded += 1
        return event

    def decode_all(self, raw_logs: Iterable[RawLog]) -> list[CoinCreatedEvent]:
        """Decode logs in ledger order, dropping the malformed ones."""
        events = []
        for raw_log in raw_logs:
            event = self.decode(raw_log)
            if event is not None:
                events.append(event)
        return events

    def _decode(self, raw_log: RawLog) -> CoinCreatedEvent:
        topics = raw_log.topics
        if len(topics) != 4:
            raise ValueError(f"Expected 4 topics, got {len(topics)}")
        if topics[0].lower() != self.topic0:
            raise ValueError(f"Unexpected event signature {topics[0]}")

        creator = topic_to_address(topics[1])
        payout_recipient = topic_to_address(topics[2])
        platform_referrer = topic_to_address(topics[3])

        data = HexBytes(raw_log.data)
        currency, uri, name, symbol, coin, pool, version = decode(COIN_CREATED_DATA_TYPES, data)

        return CoinCreatedEvent(
            creator=creator,
            payout_recipient=payout_recipient,
            platform_referrer=platform_referrer,
            currency=Web3.to_checksum_address(currency),
            coin_address=Web3.to_checksum_address(coin),
            pool=Web3.to_checksum_address(pool),
            name=name,
            symbol=symbol,
            uri=uri,
            version=version,
            block_number=raw_log.block_number,
            log_index=raw_log.log_index,
            transaction_hash=raw_log.transaction_hash,
        )

    def get_metrics(self) -> dict[str, int]:
        return {
            "events_decoded": self.events_decoded,
            "events_invalid": self.events_invalid,
        }
