"""Hourly market status broadcasts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import LinkPreviewOptions
from telegram.constants import ParseMode

from buybot.pricing.service import PriceService
from buybot.store.db import Database, WatchedToken
from buybot.store.repository import Repository
from buybot.utils.formatting import format_hourly_status_update
from buybot.utils.logging import get_logger

logger = get_logger(__name__)


def hour_bucket(now: Optional[datetime] = None) -> str:
    """UTC hour key such as ``2024-05-01T13``."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


class StatusService:
    """Send each watching chat one status update per token per hour."""

    JOB_ID = "hourly_status"

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        db: Database,
        bot,
        prices: PriceService,
        explorer_url: str,
        enabled: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.db = db
        self.bot = bot
        self.prices = prices
        self.explorer_url = explorer_url
        self.enabled = enabled

    def start(self) -> None:
        if not self.enabled:
            logger.info("status_updates_disabled")
            return
        self.scheduler.add_job(
            self.broadcast,
            trigger="cron",
            minute=0,
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        logger.info("status_job_started", job=self.JOB_ID)

    async def broadcast(self, now: Optional[datetime] = None) -> int:
        """Send the current hour's updates; return how many messages went out."""
        bucket = hour_bucket(now)
        sent = 0
        async with self.db.session() as session:
            repo = Repository(session)
            grouped: Dict[str, List[WatchedToken]] = {}
            for watch in await repo.list_all_watches():
                grouped.setdefault(watch.token_address, []).append(watch)

            for token, watches in grouped.items():
                try:
                    sent += await self._broadcast_token(repo, bucket, token, watches)
                except Exception as exc:
                    logger.error("status_token_failed", token=token, error=str(exc))

        logger.info("status_broadcast_done", bucket=bucket, sent=sent)
        return sent

    async def _broadcast_token(
        self,
        repo: Repository,
        bucket: str,
        token: str,
        watches: List[WatchedToken],
    ) -> int:
        claimed = [
            watch
            for watch in watches
            if await repo.claim_hourly_status(bucket, token, watch.chat_id)
        ]
        if not claimed:
            return 0

        info = await self.prices.get_token_info(token)
        metrics = await self.prices.get_status_metrics(token)
        since_start_volume, since_start_biggest = await repo.get_trade_summary(token)
        text = format_hourly_status_update(
            token_address=token,
            token_name=info.name if info else claimed[0].name,
            token_symbol=info.symbol if info else claimed[0].symbol,
            metrics=metrics,
            explorer_url=self.explorer_url,
            since_start_volume_usd=since_start_volume,
            since_start_biggest_buy_usd=since_start_biggest,
        )

        sent = 0
        for watch in claimed:
            try:
                await self.bot.send_message(
                    chat_id=watch.chat_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                )
                sent += 1
            except Exception as exc:
                logger.warning(
                    "status_send_failed",
                    chat_id=watch.chat_id,
                    token=token,
                    error=str(exc),
                )
        return sent
