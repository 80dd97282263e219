import httpx
import pytest

from buybot.pricing.portfolio_api import (
    PortfolioClient,
    extract_metrics,
    extract_price,
    probe_positive,
)

TOKEN = "0x" + "b2" * 20


def test_extract_price_from_data_envelope():
    payload = {"data": {"priceUsd": "0.01", "priceNative": 0.002}}
    assert extract_price(payload) == (0.002, 0.01)


def test_probe_skips_non_positive_and_boolean_values():
    payload = {"price_usd": 0, "priceUsd": True, "usd_price": "abc", "usdPrice": "2.5"}
    keys = ("price_usd", "priceUsd", "usd_price", "usdPrice")
    assert probe_positive(payload, keys) == 2.5


def test_extract_metrics_nested_paths():
    payload = {
        "marketCap": 125000,
        "volume": {"h24": "4300.5"},
        "txns": {"h24": {"buys": 12, "sells": 0}},
        "holders": "321",
    }
    metrics = extract_metrics(payload)
    assert metrics.market_cap_usd == 125000
    assert metrics.volume_24h_usd == 4300.5
    assert metrics.buyers_24h == 12
    assert metrics.sellers_24h == 0
    assert metrics.holders == 321
    assert metrics.biggest_buy_24h_usd is None
    assert metrics.missing() == ["biggest_buy_24h_usd"]


@pytest.mark.asyncio
async def test_fetch_token_requests_lowercase_address():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"price_usd": 1.5})

    client = PortfolioClient(
        "https://portfolio.example/", transport=httpx.MockTransport(handler)
    )
    payload = await client.fetch_token(TOKEN.upper().replace("0X", "0x"))
    await client.close()

    assert payload == {"price_usd": 1.5}
    assert seen == [f"/api/v1/tokens/{TOKEN}"]


@pytest.mark.asyncio
async def test_fetch_token_not_found_returns_none():
    client = PortfolioClient(
        "https://portfolio.example",
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )
    assert await client.fetch_token(TOKEN) is None
    await client.close()


@pytest.mark.asyncio
async def test_fetch_token_server_error_raises():
    client = PortfolioClient(
        "https://portfolio.example",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )
    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch_token(TOKEN)
    await client.close()
