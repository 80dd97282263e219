"""Block-polling buy monitor."""

from __future__ import annotations

import sys
from typing import Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buybot.chain.client import ChainClient
from buybot.monitor.classifier import EventClassifier
from buybot.monitor.delivery import AlertDispatcher
from buybot.monitor.positions import PositionTracker
from buybot.monitor_types import (
    DexSource,
    SwapAlert,
    SwapLog,
    SwapType,
    TokenInfo,
    TransferLog,
    normalize_address,
)
from buybot.pricing.service import USID_DECIMALS, PriceService
from buybot.store.db import Database
from buybot.store.repository import Repository
from buybot.utils.formatting import (
    format_holdings,
    format_units,
    format_usd_rounded,
    to_float,
)
from buybot.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

# Orders after every indexed transaction of the same block.
UNKNOWN_TX_INDEX = sys.maxsize

UNKNOWN_TOKEN_INFO = TokenInfo(
    name="Unknown Token", symbol="UNKNOWN", decimals=18, total_supply=0
)


class MonitorService:
    """Poll new blocks for buys of watched tokens and hand them to delivery.

    Each tick scans ``[last_height + 1, head]``; ``last_height`` only moves
    once the whole range was queried. Duplicate work on a retried range is
    absorbed by the detected-transaction check.
    """

    JOB_ID = "chain_poller"

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        db: Database,
        chain: ChainClient,
        classifier: EventClassifier,
        prices: PriceService,
        positions: PositionTracker,
        dispatcher: AlertDispatcher,
        poll_interval_seconds: float = 3.0,
        hlpmm_emitter_address: Optional[str] = None,
    ) -> None:
        self.scheduler = scheduler
        self.db = db
        self.chain = chain
        self.classifier = classifier
        self.prices = prices
        self.positions = positions
        self.dispatcher = dispatcher
        self.poll_interval_seconds = poll_interval_seconds
        self.hlpmm_emitter_address = normalize_address(hlpmm_emitter_address) or None
        self.last_height: Optional[int] = None
        self._watched: Set[str] = set()
        self._scanning = False

    @property
    def watched_tokens(self) -> Set[str]:
        return set(self._watched)

    async def start(self) -> None:
        async with self.db.session() as session:
            tokens = await Repository(session).list_watched_token_addresses()
        for token in tokens:
            await self.start_watching(token)
        logger.info(
            "monitor_started",
            tokens=len(self._watched),
            hlpmm=bool(self.hlpmm_emitter_address),
        )

    async def stop(self) -> None:
        self._remove_job()
        self._watched.clear()
        await self.chain.close()
        logger.info("monitor_stopped")

    async def start_watching(self, token_address: str) -> None:
        token = normalize_address(token_address)
        if token in self._watched:
            return
        self._watched.add(token)
        self._ensure_job()
        logger.info("token_watch_started", token=token, watched=len(self._watched))

    async def stop_watching(self, token_address: str) -> None:
        token = normalize_address(token_address)
        self._watched.discard(token)
        logger.info("token_watch_stopped", token=token, watched=len(self._watched))
        if not self._watched:
            self._remove_job()

    def is_watched(self, token_address: str) -> bool:
        return normalize_address(token_address) in self._watched

    def _ensure_job(self) -> None:
        if self.scheduler.get_job(self.JOB_ID):
            return
        # max_instances=2 lets an overlapping tick reach the in-flight guard
        # and return immediately instead of being reported as missed.
        self.scheduler.add_job(
            self.poll_once,
            trigger="interval",
            seconds=self.poll_interval_seconds,
            id=self.JOB_ID,
            max_instances=2,
            coalesce=True,
        )
        logger.info("poller_job_added", interval=self.poll_interval_seconds)

    def _remove_job(self) -> None:
        if self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
            # a later restart scans from the head instead of a stale catch-up range
            self.last_height = None
            logger.info("poller_job_removed")

    async def poll_once(self) -> None:
        """Run one scan unless another one is still in flight."""
        if self._scanning or not self._watched:
            return
        self._scanning = True
        try:
            await self._scan()
        except Exception as exc:
            logger.error("scan_failed", last_height=self.last_height, error=str(exc))
        finally:
            self._scanning = False
            clear_context()

    async def _scan(self) -> None:
        head = await self.chain.get_block_number()
        if self.last_height is not None and head <= self.last_height:
            return
        from_block = head if self.last_height is None else self.last_height + 1
        bind_context(from_block=from_block, to_block=head)

        for token in sorted(self._watched):
            transfers = await self.chain.get_transfer_logs(token, from_block, head)
            for transfer in transfers:
                try:
                    await self.handle_transfer(transfer)
                except Exception as exc:
                    logger.error(
                        "transfer_handling_failed",
                        token=token,
                        tx_hash=transfer.tx_hash,
                        error=str(exc),
                    )

        if self.hlpmm_emitter_address:
            swaps = await self.chain.get_swap_logs(
                self.hlpmm_emitter_address, from_block, head
            )
            for swap in swaps:
                try:
                    await self.handle_swap(swap)
                except Exception as exc:
                    logger.error(
                        "swap_handling_failed",
                        pool=swap.pool,
                        tx_hash=swap.tx_hash,
                        error=str(exc),
                    )

        self.last_height = head
        logger.debug("scan_completed", from_block=from_block, to_block=head)

    async def _get_token_info(self, token: str, tx_hash: str) -> TokenInfo:
        info = await self.prices.get_token_info(token)
        if info is None:
            logger.warning("swap_token_info_missing", token=token, tx_hash=tx_hash)
            return UNKNOWN_TOKEN_INFO
        return info

    async def _already_detected(self, tx_hash: str) -> bool:
        async with self.db.session() as session:
            return await Repository(session).has_detected_transaction(tx_hash)

    async def handle_transfer(self, transfer: TransferLog) -> None:
        """Enrich a router-venue Transfer into an alert and deliver it."""
        token = normalize_address(transfer.token_address)
        if token not in self._watched or await self._already_detected(transfer.tx_hash):
            return

        tx = await self.chain.get_transaction(transfer.tx_hash)
        if tx is None:
            logger.debug("transaction_not_found", tx_hash=transfer.tx_hash)
            return

        classification = self.classifier.classify_transfer(transfer, tx)
        if classification is None:
            return

        tx_index = transfer.transaction_index
        if tx_index is None:
            tx_index = await self.chain.get_transaction_index(transfer.tx_hash)

        info = await self._get_token_info(token, tx.hash)

        price = await self.prices.get_price(token)
        price_in_usd = price.price_in_usd if price else 0.0
        price_in_native = price.price_in_native if price else 0.0
        if price is None:
            logger.warning("swap_price_unknown", token=token, tx_hash=tx.hash)

        token_amount = format_units(transfer.value, info.decimals)
        amount = to_float(token_amount)
        estimated_native = format(amount * price_in_native, "f")
        purchase = await self.classifier.resolve_purchase_details(
            tx, token, estimated_native
        )

        alert = await self._build_alert(
            classification_type=classification.type,
            source=classification.source,
            token=token,
            info=info,
            trader=classification.trader,
            tx_hash=tx.hash,
            block_number=transfer.block_number,
            tx_index=tx_index,
            token_amount_raw=transfer.value,
            token_amount=token_amount,
            counter_amount=purchase.amount,
            counter_symbol=purchase.symbol,
            price_in_native=price_in_native,
            price_in_usd=price_in_usd,
            usd_value=amount * price_in_usd,
            market_cap_usd=info.total_supply_units * price_in_usd,
        )
        await self.dispatcher.dispatch(alert)

    async def handle_swap(self, swap: SwapLog) -> None:
        """Enrich an HLPMM Swap into an alert and deliver it."""
        classification = await self.classifier.classify_swap(swap, self._watched)
        if classification is None or await self._already_detected(swap.tx_hash):
            return

        tx = await self.chain.get_transaction(swap.tx_hash)
        if tx is None:
            logger.debug("transaction_not_found", tx_hash=swap.tx_hash)
            return

        token = classification.token_address
        info = await self._get_token_info(token, tx.hash)

        token_amount = format_units(swap.amount_out, info.decimals)
        usid_amount = format_units(swap.amount_in, USID_DECIMALS)
        amount = to_float(token_amount)
        usd_value = to_float(usid_amount)

        price = await self.prices.get_price(token)
        effective_usd = usd_value / amount if amount > 0 else 0.0
        if effective_usd <= 0 and price:
            effective_usd = price.price_in_usd
        price_in_native = price.price_in_native if price else 0.0

        market_cap = await self.prices.get_hlpmm_market_cap(token)
        if market_cap is None:
            market_cap = info.total_supply_units * effective_usd

        tx_index = swap.transaction_index
        if tx_index is None:
            tx_index = await self.chain.get_transaction_index(swap.tx_hash)

        alert = await self._build_alert(
            classification_type=classification.type,
            source=classification.source,
            token=token,
            info=info,
            trader=tx.from_address,
            tx_hash=tx.hash,
            block_number=swap.block_number,
            tx_index=tx_index,
            token_amount_raw=swap.amount_out,
            token_amount=token_amount,
            counter_amount=usid_amount,
            counter_symbol=self.classifier.quote_symbol,
            price_in_native=price_in_native,
            price_in_usd=effective_usd,
            usd_value=usd_value,
            market_cap_usd=market_cap,
        )
        await self.dispatcher.dispatch(alert)

    async def _build_alert(
        self,
        classification_type: SwapType,
        source: DexSource,
        token: str,
        info: TokenInfo,
        trader: str,
        tx_hash: str,
        block_number: int,
        tx_index: Optional[int],
        token_amount_raw: int,
        token_amount: str,
        counter_amount: str,
        counter_symbol: str,
        price_in_native: float,
        price_in_usd: float,
        usd_value: float,
        market_cap_usd: float,
    ) -> SwapAlert:
        balance = await self.chain.balance_of(token, trader)
        holdings = format_units(balance, info.decimals)
        holdings_amount = to_float(holdings)

        label = await self.positions.compute_label(
            token,
            trader,
            tx_hash,
            block_number,
            tx_index if tx_index is not None else UNKNOWN_TX_INDEX,
            holdings_amount,
            to_float(token_amount),
        )
        logger.info(
            "swap_detected",
            source=source.value,
            token=info.symbol or token,
            trader=trader,
            position=label,
            tx_hash=tx_hash,
        )

        return SwapAlert(
            type=classification_type,
            source=source,
            token_address=token,
            token_symbol=info.symbol,
            token_name=info.name,
            trader=normalize_address(trader),
            tx_hash=tx_hash,
            block_number=block_number,
            token_amount_raw=token_amount_raw,
            token_amount=token_amount,
            counter_amount=counter_amount,
            counter_symbol=counter_symbol,
            price_in_native=price_in_native,
            price_in_usd=price_in_usd,
            usd_value=usd_value,
            market_cap_usd=market_cap_usd,
            position_label=label,
            current_holdings=holdings,
            holdings_display=format_holdings(holdings_amount),
            holdings_usd_display=format_usd_rounded(holdings_amount * price_in_usd),
        )
