"""Classification of on-chain events into buys."""

from __future__ import annotations

from typing import Collection, Dict, Optional

from buybot.chain.client import ChainClient
from buybot.monitor_types import (
    ZERO_ADDRESS,
    Classification,
    DexSource,
    PurchaseDetails,
    SwapLog,
    SwapType,
    TransferLog,
    TxInfo,
    normalize_address,
    same_address,
)
from buybot.utils.formatting import format_units
from buybot.utils.logging import get_logger
from buybot.utils.tx_parser import input_amount, path_ends_with, swap_path

logger = get_logger(__name__)

NATIVE_DECIMALS = 18


class EventClassifier:
    """Decide whether a Transfer or HLPMM Swap log is a buy.

    Both venues are classified by where the event sits in the transfer
    graph; router call data is only decoded to attribute the counter-asset.
    """

    def __init__(
        self,
        chain: ChainClient,
        router_address: str,
        wrapped_native_address: str,
        native_symbol: str = "PAX",
        hlpmm_factory_address: Optional[str] = None,
        hlpmm_quote_address: Optional[str] = None,
        quote_symbol: str = "USID",
    ) -> None:
        self.chain = chain
        self.router_address = normalize_address(router_address)
        self.wrapped_native_address = normalize_address(wrapped_native_address)
        self.native_symbol = native_symbol
        self.hlpmm_factory_address = normalize_address(hlpmm_factory_address) or None
        self.hlpmm_quote_address = normalize_address(hlpmm_quote_address) or None
        self.quote_symbol = quote_symbol
        self._pool_token_cache: Dict[str, str] = {}

    def classify_transfer(
        self, transfer: TransferLog, tx: TxInfo
    ) -> Optional[Classification]:
        """Classify a router-venue Transfer given its originating transaction."""
        router = self.router_address
        if same_address(transfer.from_address, router):
            trader = transfer.to_address
        elif same_address(tx.to_address, router) and same_address(
            transfer.to_address, tx.from_address
        ):
            # multi-hop: the router forwards the output to the caller last
            trader = transfer.to_address
        else:
            return None
        return Classification(
            type=SwapType.BUY,
            trader=normalize_address(trader),
            token_address=normalize_address(transfer.token_address),
            source=DexSource.AMM,
        )

    async def classify_swap(
        self, swap: SwapLog, watched: Collection[str]
    ) -> Optional[Classification]:
        """Classify an HLPMM Swap; only USID-in swaps of watched tokens are buys.

        The returned trader is the emitter's sender; callers attribute the
        buy to the transaction origin once the transaction is fetched.
        """
        if not self.hlpmm_quote_address or not same_address(
            swap.token_in, self.hlpmm_quote_address
        ):
            return None

        token_address = normalize_address(swap.token_out)
        if token_address not in watched:
            resolved = await self.resolve_pool_token(swap.pool)
            if not resolved or resolved not in watched:
                return None
            token_address = resolved

        return Classification(
            type=SwapType.BUY,
            trader=normalize_address(swap.sender),
            token_address=token_address,
            source=DexSource.HLPMM,
        )

    async def resolve_pool_token(self, pool_address: str) -> Optional[str]:
        normalized = normalize_address(pool_address)
        cached = self._pool_token_cache.get(normalized)
        if cached:
            return cached
        if not self.hlpmm_factory_address:
            return None
        try:
            token = await self.chain.pool_to_token(
                self.hlpmm_factory_address, normalized
            )
        except Exception as exc:
            logger.error("hlpmm_pool_resolve_failed", pool=normalized, error=str(exc))
            return None
        if not token or token == ZERO_ADDRESS:
            return None
        self._pool_token_cache[normalized] = token
        return token

    async def resolve_purchase_details(
        self, tx: TxInfo, token_address: str, fallback_amount: str
    ) -> PurchaseDetails:
        """Work out which asset and how much of it the buyer spent."""
        native_fallback = PurchaseDetails(
            symbol=self.native_symbol,
            amount=(
                format_units(tx.value, NATIVE_DECIMALS)
                if tx.value > 0
                else fallback_amount
            ),
        )
        estimated = PurchaseDetails(symbol=self.native_symbol, amount=fallback_amount)

        try:
            method, params = self.chain.decode_router_call(tx.input)
        except Exception:
            return native_fallback

        try:
            if not path_ends_with(params, token_address):
                return estimated
            raw_amount = input_amount(method, params, tx.value)
            if raw_amount is None:
                return estimated

            input_token = swap_path(params)[0]
            if input_token == self.wrapped_native_address:
                return PurchaseDetails(
                    symbol=self.native_symbol,
                    amount=format_units(raw_amount, NATIVE_DECIMALS),
                )

            symbol, decimals = await self.chain.get_symbol_and_decimals(input_token)
            return PurchaseDetails(
                symbol=symbol, amount=format_units(raw_amount, decimals)
            )
        except Exception as exc:
            logger.debug(
                "purchase_details_fallback", tx_hash=tx.hash, error=str(exc)
            )
            return estimated
