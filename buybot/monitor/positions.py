"""Trader position-change labels."""

from __future__ import annotations

import asyncio
import math
from typing import Iterable, Optional

from buybot.chain.client import ChainClient, is_range_limit_error
from buybot.monitor_types import TransferLog, normalize_address
from buybot.store.db import Database
from buybot.store.repository import Repository
from buybot.utils.logging import get_logger

logger = get_logger(__name__)

NEW_POSITION = "NEW"
UNKNOWN_PERCENT = "N/A"


def format_position_percent(current: float, previous: float) -> str:
    if not math.isfinite(previous) or previous <= 0:
        return UNKNOWN_PERCENT
    pct = (current - previous) / previous * 100
    sign = "+" if pct >= 0 else ""
    return f"{sign}{pct:.2f}%"


def _parse_holdings(value: Optional[str]) -> float:
    try:
        parsed = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def has_prior_event(
    events: Iterable[TransferLog], tx_hash: str, block_number: int, tx_index: int
) -> bool:
    """True if any event strictly precedes (block_number, tx_index).

    Events without a transaction index never precede a same-block transaction.
    """
    current = normalize_address(tx_hash)
    for event in events:
        event_hash = normalize_address(event.tx_hash)
        if not event_hash or event_hash == current:
            continue
        if event.block_number < block_number:
            return True
        if event.block_number > block_number:
            continue
        if event.transaction_index is not None and event.transaction_index < tx_index:
            return True
    return False


class PositionTracker:
    """Label a buy relative to the trader's previous holdings."""

    def __init__(
        self, db: Database, chain: ChainClient, window_blocks: int = 1000
    ) -> None:
        self.db = db
        self.chain = chain
        self.window_blocks = max(1, int(window_blocks))

    async def compute_label(
        self,
        token_address: str,
        trader: str,
        tx_hash: str,
        block_number: int,
        tx_index: int,
        current_holdings: float,
        delta_amount: float,
    ) -> str:
        async with self.db.session() as session:
            snapshot = await Repository(session).get_trader_position(
                token_address, trader
            )

        previous = _parse_holdings(snapshot.holdings_token if snapshot else None)
        inferred_previous = max(0.0, current_holdings - delta_amount)

        if snapshot and previous > 0:
            if current_holdings >= previous:
                return format_position_percent(current_holdings, previous)
            if inferred_previous > 0:
                logger.info(
                    "position_baseline_inferred",
                    token=token_address,
                    trader=trader,
                    tx_hash=tx_hash,
                    snapshot=previous,
                    inferred=inferred_previous,
                    current=current_holdings,
                )
                return format_position_percent(current_holdings, inferred_previous)
            logger.info(
                "position_baseline_reset",
                token=token_address,
                trader=trader,
                tx_hash=tx_hash,
                snapshot=previous,
                current=current_holdings,
            )
            return NEW_POSITION

        has_prior = await self.has_prior_interaction(
            token_address, trader, tx_hash, block_number, tx_index
        )
        if not has_prior or inferred_previous <= 0:
            return NEW_POSITION
        return format_position_percent(current_holdings, inferred_previous)

    async def has_prior_interaction(
        self,
        token_address: str,
        wallet: str,
        tx_hash: str,
        up_to_block: int,
        tx_index: int,
    ) -> bool:
        """Check whether the wallet moved this token before the given transaction.

        Falls back to a backwards windowed scan when the provider rejects the
        full [0, up_to_block] range; any other failure counts as no history.
        """
        try:
            try:
                events = await self._wallet_transfers(
                    token_address, wallet, 0, up_to_block
                )
                return has_prior_event(events, tx_hash, up_to_block, tx_index)
            except Exception as exc:
                if not is_range_limit_error(exc):
                    raise

            end = up_to_block
            while end >= 0:
                start = max(0, end - self.window_blocks + 1)
                events = await self._wallet_transfers(token_address, wallet, start, end)
                if has_prior_event(events, tx_hash, up_to_block, tx_index):
                    return True
                end = start - 1
            return False
        except Exception as exc:
            logger.warning(
                "prior_interaction_check_failed",
                token=token_address,
                wallet=wallet,
                error=str(exc),
            )
            return False

    async def _wallet_transfers(
        self, token_address: str, wallet: str, from_block: int, to_block: int
    ) -> list[TransferLog]:
        sent, received = await asyncio.gather(
            self.chain.get_transfer_logs(
                token_address, from_block, to_block, from_address=wallet
            ),
            self.chain.get_transfer_logs(
                token_address, from_block, to_block, to_address=wallet
            ),
        )
        return list(sent) + list(received)
