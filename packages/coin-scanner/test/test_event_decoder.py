#!/usr/bin/env python3
"""Tests for CoinCreated log decoding."""

import pytest
from web3 import Web3

from coin_scanner.event_decoder import (
    COIN_CREATED_SIGNATURE,
    EventDecoder,
    address_topic,
    coin_created_topic,
    topic_to_address,
)
from coin_scanner.models import RawLog

from conftest import ARTIST, CREATOR, CURRENCY, POOL, REFERRER, coin_address, make_log_entry


class TestTopics:
    def test_topic0_is_signature_hash(self):
        expected = "0x" + Web3.keccak(text=COIN_CREATED_SIGNATURE).hex().removeprefix("0x")
        assert coin_created_topic() == expected
        assert len(coin_created_topic()) == 66

    def test_address_topic_round_trip(self):
        topic = address_topic(REFERRER)
        assert len(topic) == 66
        assert topic.startswith("0x" + "0" * 24)
        assert topic_to_address(topic) == REFERRER

    @pytest.mark.parametrize("address", [CREATOR, ARTIST, REFERRER, POOL])
    def test_topic_address_is_checksummed(self, address):
        """Lower-case input comes back in EIP-55 form."""
        assert topic_to_address(address_topic(address.lower())) == address
        assert Web3.is_checksum_address(address)

    def test_address_topic_rejects_invalid(self):
        with pytest.raises(ValueError, match="Invalid address"):
            address_topic("0x1234")

    def test_topic_to_address_rejects_dirty_padding(self):
        with pytest.raises(ValueError, match="not a padded address"):
            topic_to_address("0x" + "ff" * 32)


class TestEventDecoder:
    """Test suite for EventDecoder."""

    def test_decode_coin_created(self):
        decoder = EventDecoder()
        raw_log = RawLog.from_rpc(make_log_entry(7, block_number=30146400, log_index=3))

        event = decoder.decode(raw_log)

        assert event is not None
        assert event.creator == CREATOR
        assert event.payout_recipient == ARTIST
        assert event.platform_referrer == REFERRER
        assert event.currency == CURRENCY
        assert event.pool == POOL
        assert event.coin_address == coin_address(7)
        assert event.name == "Track 7"
        assert event.symbol == "TRK7"
        assert event.uri == "ipfs://bafybeicoin7"
        assert event.version == "v4"
        assert event.block_number == 30146400
        assert event.log_index == 3
        assert decoder.get_metrics() == {"events_decoded": 1, "events_invalid": 0}

    def test_wrong_topic_count_dropped(self):
        entry = make_log_entry(1, block_number=10)
        entry["topics"] = entry["topics"][:3]

        decoder = EventDecoder()
        assert decoder.decode(RawLog.from_rpc(entry)) is None
        assert decoder.events_invalid == 1

    def test_wrong_signature_dropped(self):
        entry = make_log_entry(1, block_number=10)
        entry["topics"][0] = "0x" + "ab" * 32

        assert EventDecoder().decode(RawLog.from_rpc(entry)) is None

    def test_truncated_data_dropped(self, caplog):
        entry = make_log_entry(1, block_number=10)
        entry["data"] = entry["data"][:100]

        decoder = EventDecoder()
        with caplog.at_level("WARNING"):
            assert decoder.decode(RawLog.from_rpc(entry)) is None
        assert "Dropping malformed log at block 10" in caplog.text

    def test_decode_all_keeps_order_and_skips_bad(self):
        good_a = make_log_entry(1, block_number=10)
        bad = make_log_entry(2, block_number=11)
        bad["data"] = "0x"
        good_b = make_log_entry(3, block_number=12)

        events = EventDecoder().decode_all(RawLog.from_rpc(e) for e in (good_a, bad, good_b))

        assert [event.symbol for event in events] == ["TRK1", "TRK3"]
