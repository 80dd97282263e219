from datetime import datetime, timedelta, timezone

import httpx
import pytest

from buybot.pricing.explorer_api import ExplorerClient, parse_transfer

TOKEN = "0x" + "b2" * 20
ROUTER = "0x" + "a1" * 20
BUYER = "0x" + "c3" * 20


def _item(tx_hash: str, minutes_ago: int, value: int = 10**18) -> dict:
    timestamp = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return {
        "tx_hash": tx_hash,
        "from": {"hash": ROUTER},
        "to": {"hash": BUYER},
        "total": {"value": str(value), "decimals": "18"},
        "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
    }


def test_parse_transfer_reads_blockscout_shape():
    transfer = parse_transfer(_item("0xAA", 5, value=25 * 10**17))
    assert transfer is not None
    assert transfer.tx_hash == "0xaa"
    assert transfer.from_address == ROUTER
    assert transfer.to_address == BUYER
    assert transfer.amount == 2.5


def test_parse_transfer_without_timestamp_is_skipped():
    item = _item("0x01", 5)
    item["timestamp"] = None
    assert parse_transfer(item) is None


@pytest.mark.asyncio
async def test_transfers_follow_pages_until_cutoff():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(dict(request.url.params))
        if "block_number" not in request.url.params:
            return httpx.Response(
                200,
                json={
                    "items": [_item("0x01", 10), _item("0x02", 60)],
                    "next_page_params": {"block_number": 90, "index": 3},
                },
            )
        return httpx.Response(
            200,
            json={
                "items": [_item("0x03", 120), _item("0x04", 60 * 30)],
                "next_page_params": {"block_number": 80, "index": 1},
            },
        )

    client = ExplorerClient(
        "https://scan.example/", transport=httpx.MockTransport(handler)
    )
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    transfers = await client.get_transfers_since(TOKEN, since)
    await client.close()

    assert [t.tx_hash for t in transfers] == ["0x01", "0x02", "0x03"]
    assert len(requests) == 2
    assert requests[1] == {"block_number": "90", "index": "3"}


@pytest.mark.asyncio
async def test_transfers_stop_at_max_pages():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(
            200,
            json={
                "items": [_item(f"0x{len(calls):02x}", 1)],
                "next_page_params": {"page": len(calls)},
            },
        )

    client = ExplorerClient(
        "https://scan.example", transport=httpx.MockTransport(handler)
    )
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    transfers = await client.get_transfers_since(TOKEN, since, max_pages=3)
    await client.close()

    assert len(calls) == 3
    assert len(transfers) == 3


@pytest.mark.asyncio
async def test_holder_count():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/api/v2/tokens/{TOKEN}/counters"
        return httpx.Response(
            200, json={"token_holders_count": "1234", "transfers_count": "99"}
        )

    client = ExplorerClient(
        "https://scan.example", transport=httpx.MockTransport(handler)
    )
    assert await client.get_holder_count(TOKEN) == 1234
    await client.close()
