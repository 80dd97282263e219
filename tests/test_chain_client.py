"""Tests for log decoding at the RPC boundary."""

from eth_abi import encode as abi_encode
from web3 import Web3

from buybot.chain.abis import SWAP_DATA_TYPES, TRANSFER_TOPIC
from buybot.chain.client import (
    SWAP_TOPIC,
    address_to_topic,
    decode_swap_log,
    decode_transfer_log,
    is_range_limit_error,
)

ROUTER = "0x" + "a1" * 20
TRADER = "0x" + "c3" * 20
TOKEN = "0x" + "b2" * 20
USID = "0x" + "e5" * 20
POOL = "0x" + "f6" * 20


def _word(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def test_address_to_topic_left_pads() -> None:
    topic = address_to_topic(ROUTER.upper().replace("0X", "0x"))
    assert len(topic) == 66
    assert topic.endswith("a1" * 20)
    assert topic.startswith("0x" + "0" * 24)


def test_decode_transfer_log() -> None:
    raw = {
        "address": Web3.to_checksum_address(TOKEN),
        "topics": [TRANSFER_TOPIC, address_to_topic(ROUTER), address_to_topic(TRADER)],
        "data": _word(1000 * 10**18),
        "transactionHash": "0xABC",
        "blockNumber": 100,
        "transactionIndex": "0x3",
        "logIndex": 7,
    }
    transfer = decode_transfer_log(raw)

    assert transfer is not None
    assert transfer.token_address == TOKEN
    assert transfer.from_address == ROUTER
    assert transfer.to_address == TRADER
    assert transfer.value == 1000 * 10**18
    assert transfer.tx_hash == "0xabc"
    assert transfer.block_number == 100
    assert transfer.transaction_index == 3
    assert transfer.log_index == 7


def test_decode_transfer_log_rejects_other_events() -> None:
    raw = {
        "address": TOKEN,
        "topics": [SWAP_TOPIC, address_to_topic(ROUTER), address_to_topic(TRADER)],
        "data": _word(1),
        "transactionHash": "0x01",
        "blockNumber": 1,
    }
    assert decode_transfer_log(raw) is None


def test_decode_transfer_log_without_index_keeps_none() -> None:
    raw = {
        "address": TOKEN,
        "topics": [TRANSFER_TOPIC, address_to_topic(ROUTER), address_to_topic(TRADER)],
        "data": _word(5),
        "transactionHash": "0x01",
        "blockNumber": 9,
    }
    transfer = decode_transfer_log(raw)
    assert transfer is not None
    assert transfer.transaction_index is None


def test_decode_swap_log() -> None:
    data = abi_encode(
        SWAP_DATA_TYPES,
        [
            Web3.to_checksum_address(USID),
            Web3.to_checksum_address(TOKEN),
            25 * 10**18,
            1000 * 10**18,
            10**21,
            10**24,
            10**16,
            1_700_000_000,
        ],
    )
    raw = {
        "address": "0x" + "99" * 20,
        "topics": [SWAP_TOPIC, address_to_topic(POOL), address_to_topic(TRADER)],
        "data": "0x" + data.hex(),
        "transactionHash": "0xdef",
        "blockNumber": 200,
        "transactionIndex": 1,
    }
    swap = decode_swap_log(raw)

    assert swap is not None
    assert swap.pool == POOL
    assert swap.sender == TRADER
    assert swap.token_in == USID
    assert swap.token_out == TOKEN
    assert swap.amount_in == 25 * 10**18
    assert swap.amount_out == 1000 * 10**18
    assert swap.fee_amount == 10**16
    assert swap.transaction_index == 1


def test_range_limit_detection() -> None:
    assert is_range_limit_error(ValueError("query returned more than 10000 results"))
    assert is_range_limit_error("Block range is too large")
    assert not is_range_limit_error(ConnectionError("connection reset by peer"))
    assert not is_range_limit_error("")
