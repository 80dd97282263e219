"""Token price resolution across portfolio API, router and HLPMM quoter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from buybot.chain.client import ChainClient
from buybot.monitor_types import (
    ZERO_ADDRESS,
    StatusMetrics,
    TokenInfo,
    TokenPrice,
    normalize_address,
    same_address,
)
from buybot.pricing.explorer_api import ExplorerClient
from buybot.pricing.portfolio_api import PortfolioClient, extract_metrics, extract_price
from buybot.utils.logging import get_logger
from buybot.utils.rate_limit import RateLimiter

logger = get_logger(__name__)

NATIVE_DECIMALS = 18
USID_DECIMALS = 18
FALLBACK_WARNING_INTERVAL_SECONDS = 300
STATUS_WINDOW = timedelta(hours=24)


class PriceService:
    """Resolve token prices with ordered fallbacks.

    Sources are tried in order: portfolio API, router ``getAmountsOut``,
    then the HLPMM quoter. A half-known price is completed with the
    native/USD reference rate.
    """

    def __init__(
        self,
        chain: ChainClient,
        router_address: str,
        wrapped_native_address: str,
        stablecoin_address: str,
        native_usd_fallback: float,
        hlpmm_factory_address: Optional[str] = None,
        hlpmm_quoter_address: Optional[str] = None,
        portfolio: Optional[PortfolioClient] = None,
        explorer: Optional[ExplorerClient] = None,
    ) -> None:
        self.chain = chain
        self.router_address = normalize_address(router_address)
        self.wrapped_native_address = normalize_address(wrapped_native_address)
        self.stablecoin_address = normalize_address(stablecoin_address)
        self.native_usd_fallback = native_usd_fallback
        self.hlpmm_factory_address = normalize_address(hlpmm_factory_address) or None
        self.hlpmm_quoter_address = normalize_address(hlpmm_quoter_address) or None
        self.portfolio = portfolio
        self.explorer = explorer
        self._token_info: Dict[str, TokenInfo] = {}
        self._pools: Dict[str, str] = {}
        self._stablecoin_decimals: Optional[int] = None
        self._fallback_warnings = RateLimiter(1, FALLBACK_WARNING_INTERVAL_SECONDS)

    async def close(self) -> None:
        if self.portfolio:
            await self.portfolio.close()
        if self.explorer:
            await self.explorer.close()

    async def get_token_info(self, token_address: str) -> Optional[TokenInfo]:
        token = normalize_address(token_address)
        cached = self._token_info.get(token)
        if cached:
            return cached
        try:
            info = await self.chain.get_token_info(token)
        except Exception as exc:
            logger.error("token_info_failed", token=token, error=str(exc))
            return None
        self._token_info[token] = info
        return info

    async def _get_stablecoin_decimals(self) -> int:
        if self._stablecoin_decimals is None:
            self._stablecoin_decimals = await self.chain.get_decimals(
                self.stablecoin_address
            )
        return self._stablecoin_decimals

    async def get_native_usd_price(self) -> float:
        """Native/USD reference rate, falling back to the configured price."""
        try:
            decimals = await self._get_stablecoin_decimals()
            amounts = await self.chain.get_amounts_out(
                self.router_address,
                10**NATIVE_DECIMALS,
                [self.wrapped_native_address, self.stablecoin_address],
            )
            price = amounts[-1] / (10**decimals)
            if price > 0:
                return price
            error = "zero quote"
        except Exception as exc:
            error = str(exc)
        if self._fallback_warnings.allow("native_usd"):
            logger.warning(
                "native_usd_price_fallback",
                fallback=self.native_usd_fallback,
                error=error,
            )
        return self.native_usd_fallback

    async def get_price(self, token_address: str) -> Optional[TokenPrice]:
        """Return the token price, or None when every source fails."""
        token = normalize_address(token_address)
        sources = (
            ("portfolio", self._price_from_portfolio),
            ("router", self._price_from_router),
            ("hlpmm", self._price_from_hlpmm),
        )
        for name, source in sources:
            try:
                price = await source(token)
            except Exception as exc:
                logger.warning(
                    "price_source_failed", source=name, token=token, error=str(exc)
                )
                continue
            if price:
                logger.debug(
                    "price_resolved",
                    source=name,
                    token=token,
                    usd=price.price_in_usd,
                    native=price.price_in_native,
                )
                return price
        logger.warning("price_unavailable", token=token)
        return None

    async def _complete(
        self, native: Optional[float], usd: Optional[float]
    ) -> Optional[TokenPrice]:
        if not native and not usd:
            return None
        if native and usd:
            return TokenPrice(price_in_native=native, price_in_usd=usd)
        rate = await self.get_native_usd_price()
        if usd:
            return TokenPrice(price_in_native=usd / rate, price_in_usd=usd)
        return TokenPrice(price_in_native=native, price_in_usd=native * rate)

    async def _price_from_portfolio(self, token: str) -> Optional[TokenPrice]:
        if not self.portfolio:
            return None
        payload = await self.portfolio.fetch_token(token)
        if not payload:
            return None
        native, usd = extract_price(payload)
        return await self._complete(native, usd)

    async def _price_from_router(self, token: str) -> Optional[TokenPrice]:
        decimals = await self.chain.get_decimals(token)
        amount_in = 10**decimals
        native: Optional[float] = None
        usd: Optional[float] = None

        try:
            amounts = await self.chain.get_amounts_out(
                self.router_address, amount_in, [token, self.wrapped_native_address]
            )
            native = amounts[-1] / (10**NATIVE_DECIMALS)
        except Exception as exc:
            logger.debug("router_native_quote_failed", token=token, error=str(exc))

        try:
            stable_decimals = await self._get_stablecoin_decimals()
            amounts = await self.chain.get_amounts_out(
                self.router_address, amount_in, [token, self.stablecoin_address]
            )
            usd = amounts[-1] / (10**stable_decimals)
        except Exception as exc:
            logger.debug("router_usd_quote_failed", token=token, error=str(exc))

        return await self._complete(native, usd)

    async def get_hlpmm_pool(self, token_address: str) -> Optional[str]:
        if not self.hlpmm_factory_address:
            return None
        token = normalize_address(token_address)
        cached = self._pools.get(token)
        if cached:
            return cached
        pool = await self.chain.token_to_pool(self.hlpmm_factory_address, token)
        if not pool or pool == ZERO_ADDRESS:
            return None
        self._pools[token] = pool
        return pool

    async def _price_from_hlpmm(self, token: str) -> Optional[TokenPrice]:
        if not self.hlpmm_quoter_address:
            return None
        pool = await self.get_hlpmm_pool(token)
        if not pool:
            return None
        spot = await self.chain.get_spot_price(self.hlpmm_quoter_address, pool)
        # USID is treated as a dollar.
        return await self._complete(None, spot / (10**USID_DECIMALS))

    async def get_hlpmm_market_cap(self, token_address: str) -> Optional[float]:
        if not self.hlpmm_quoter_address:
            return None
        try:
            pool = await self.get_hlpmm_pool(token_address)
            if not pool:
                return None
            raw = await self.chain.get_market_cap(self.hlpmm_quoter_address, pool)
        except Exception as exc:
            logger.error("hlpmm_market_cap_failed", token=token_address, error=str(exc))
            return None
        value = raw / (10**USID_DECIMALS)
        return value if value > 0 else None

    async def get_status_metrics(self, token_address: str) -> StatusMetrics:
        """Aggregate market statistics; never raises, unknown fields stay None."""
        token = normalize_address(token_address)
        metrics = StatusMetrics()
        price: Optional[TokenPrice] = None
        price_loaded = False

        async def usd_price() -> Optional[float]:
            nonlocal price, price_loaded
            if not price_loaded:
                price_loaded = True
                try:
                    price = await self.get_price(token)
                except Exception as exc:
                    logger.warning("status_price_failed", token=token, error=str(exc))
            return price.price_in_usd if price else None

        if self.portfolio:
            try:
                payload = await self.portfolio.fetch_token(token)
                if payload:
                    metrics = extract_metrics(payload)
                    metrics.sources.append("portfolio")
            except Exception as exc:
                logger.warning("status_portfolio_failed", token=token, error=str(exc))

        window_fields = (
            metrics.volume_24h_usd,
            metrics.buyers_24h,
            metrics.sellers_24h,
            metrics.biggest_buy_24h_usd,
        )
        if self.explorer and any(value is None for value in window_fields):
            try:
                await self._fill_from_transfers(
                    self.explorer, token, metrics, await usd_price()
                )
                metrics.sources.append("explorer")
            except Exception as exc:
                logger.warning("status_explorer_failed", token=token, error=str(exc))

        if self.explorer and metrics.holders is None:
            try:
                metrics.holders = await self.explorer.get_holder_count(token)
            except Exception as exc:
                logger.warning("status_holders_failed", token=token, error=str(exc))

        if metrics.market_cap_usd is None:
            metrics.market_cap_usd = await self.get_hlpmm_market_cap(token)
            if metrics.market_cap_usd is None:
                info = await self.get_token_info(token)
                unit_price = await usd_price()
                if info and unit_price:
                    metrics.market_cap_usd = info.total_supply_units * unit_price

        if not metrics.is_complete():
            logger.debug("status_metrics_partial", token=token, missing=metrics.missing())
        return metrics

    async def _fill_from_transfers(
        self,
        explorer: ExplorerClient,
        token: str,
        metrics: StatusMetrics,
        price_usd: Optional[float],
    ) -> None:
        since = datetime.now(timezone.utc) - STATUS_WINDOW
        transfers = await explorer.get_transfers_since(token, since)

        buyers = set()
        sellers = set()
        volume = 0.0
        biggest = 0.0
        for transfer in transfers:
            value_usd = transfer.amount * price_usd if price_usd else None
            if same_address(transfer.from_address, self.router_address):
                buyers.add(transfer.to_address)
                if value_usd is not None:
                    volume += value_usd
                    biggest = max(biggest, value_usd)
            elif same_address(transfer.to_address, self.router_address):
                sellers.add(transfer.from_address)
                if value_usd is not None:
                    volume += value_usd

        if metrics.buyers_24h is None:
            metrics.buyers_24h = len(buyers)
        if metrics.sellers_24h is None:
            metrics.sellers_24h = len(sellers)
        if price_usd:
            if metrics.volume_24h_usd is None:
                metrics.volume_24h_usd = volume
            if metrics.biggest_buy_24h_usd is None:
                metrics.biggest_buy_24h_usd = biggest
