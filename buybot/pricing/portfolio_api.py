"""Client for the off-chain portfolio token API."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from buybot.monitor_types import StatusMetrics, normalize_address
from buybot.utils.logging import get_logger

logger = get_logger(__name__)

# Deployed API versions disagree on field naming; probe in order.
PRICE_USD_KEYS = ("price_usd", "priceUsd", "priceUSD", "usd_price", "usdPrice", "price.usd")
PRICE_NATIVE_KEYS = (
    "price_native",
    "priceNative",
    "price_in_native",
    "priceInNative",
    "price_eth",
    "priceInEth",
    "price.native",
)
MARKET_CAP_KEYS = ("market_cap_usd", "marketCapUsd", "market_cap", "marketCap", "fdv")
VOLUME_24H_KEYS = ("volume_24h_usd", "volume24hUsd", "volume_24h", "volume24h", "volume.h24")
BUYERS_24H_KEYS = ("buyers_24h", "buyers24h", "unique_buyers_24h", "txns.h24.buys")
SELLERS_24H_KEYS = ("sellers_24h", "sellers24h", "unique_sellers_24h", "txns.h24.sells")
HOLDERS_KEYS = ("holders", "holder_count", "holders_count", "holdersCount")
BIGGEST_BUY_24H_KEYS = (
    "biggest_buy_24h_usd",
    "biggestBuy24hUsd",
    "largest_buy_24h_usd",
    "largestBuy24hUsd",
)


def _lookup(payload: Dict[str, Any], path: str) -> Any:
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _candidates(payload: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    yield payload
    data = payload.get("data")
    if isinstance(data, dict):
        yield data


def probe_positive(payload: Dict[str, Any], keys: Iterable[str]) -> Optional[float]:
    """First positive finite number found under any key, top level or ``data``."""
    for source in _candidates(payload):
        for key in keys:
            number = _as_number(_lookup(source, key))
            if number is not None and number > 0:
                return number
    return None


def probe_count(payload: Dict[str, Any], keys: Iterable[str]) -> Optional[int]:
    for source in _candidates(payload):
        for key in keys:
            number = _as_number(_lookup(source, key))
            if number is not None and number >= 0:
                return int(number)
    return None


def extract_price(payload: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    """Return (price_in_native, price_in_usd) as reported by the API."""
    return probe_positive(payload, PRICE_NATIVE_KEYS), probe_positive(
        payload, PRICE_USD_KEYS
    )


def extract_metrics(payload: Dict[str, Any]) -> StatusMetrics:
    return StatusMetrics(
        market_cap_usd=probe_positive(payload, MARKET_CAP_KEYS),
        volume_24h_usd=probe_positive(payload, VOLUME_24H_KEYS),
        buyers_24h=probe_count(payload, BUYERS_24H_KEYS),
        sellers_24h=probe_count(payload, SELLERS_24H_KEYS),
        holders=probe_count(payload, HOLDERS_KEYS),
        biggest_buy_24h_usd=probe_positive(payload, BIGGEST_BUY_24H_KEYS),
    )


class PortfolioClient:
    """Fetches token snapshots from ``GET /api/v1/tokens/{address}``."""

    def __init__(
        self,
        api_base: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_base = str(api_base).rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_token(self, token_address: str) -> Optional[Dict[str, Any]]:
        """Return the token payload, or None when the API does not know it."""
        url = f"{self.api_base}/api/v1/tokens/{normalize_address(token_address)}"
        resp = await self._client.get(url)
        if resp.status_code == httpx.codes.NOT_FOUND:
            return None
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            logger.debug("portfolio_unexpected_payload", token=token_address)
            return None
        return data
