"""Application entrypoint."""

from __future__ import annotations

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram.ext import ApplicationBuilder

from buybot.chain.client import ChainClient
from buybot.config import load_settings
from buybot.jobs.cleanup import CleanupService
from buybot.jobs.monitor import MonitorService
from buybot.jobs.status import StatusService
from buybot.monitor.classifier import EventClassifier
from buybot.monitor.delivery import AlertDispatcher, AlertLinks
from buybot.monitor.positions import PositionTracker
from buybot.pricing.explorer_api import ExplorerClient
from buybot.pricing.portfolio_api import PortfolioClient
from buybot.pricing.service import PriceService
from buybot.store.db import Database
from buybot.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    db = Database(settings.database_url)
    db.connect()
    await db.init_models()

    # A second monitor against the same store would double-alert.
    if not await db.acquire_lock(settings.monitor_lock_name):
        logger.error("monitor_lock_unavailable", name=settings.monitor_lock_name)
        await db.dispose()
        raise SystemExit(1)

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    await application.initialize()

    chain = ChainClient(settings.rpc_endpoint, timeout=settings.http_timeout_seconds)
    portfolio = (
        PortfolioClient(
            str(settings.portfolio_api_url), timeout=settings.http_timeout_seconds
        )
        if settings.portfolio_api_url
        else None
    )
    explorer = (
        ExplorerClient(
            str(settings.explorer_api_url), timeout=settings.http_timeout_seconds
        )
        if settings.explorer_api_url
        else None
    )

    prices = PriceService(
        chain=chain,
        router_address=settings.router_address,
        wrapped_native_address=settings.wrapped_native_address,
        stablecoin_address=settings.stablecoin_address,
        native_usd_fallback=settings.native_usd_fallback_price,
        hlpmm_factory_address=settings.hlpmm_factory_address,
        hlpmm_quoter_address=settings.hlpmm_quoter_address,
        portfolio=portfolio,
        explorer=explorer,
    )
    classifier = EventClassifier(
        chain=chain,
        router_address=settings.router_address,
        wrapped_native_address=settings.wrapped_native_address,
        native_symbol=settings.native_symbol,
        hlpmm_factory_address=settings.hlpmm_factory_address,
        hlpmm_quote_address=(
            settings.hlpmm_usid_address if settings.hlpmm_enabled else None
        ),
    )
    positions = PositionTracker(
        db=db, chain=chain, window_blocks=settings.history_window_blocks
    )
    dispatcher = AlertDispatcher(
        db=db,
        bot=application.bot,
        explorer_url=settings.block_explorer_url,
        default_links=AlertLinks(
            website_url=settings.alert_website_url,
            telegram_url=settings.alert_telegram_url,
            x_url=settings.alert_x_url,
        ),
        get_funded_url=settings.get_funded_url,
    )

    scheduler = AsyncIOScheduler()
    monitor = MonitorService(
        scheduler=scheduler,
        db=db,
        chain=chain,
        classifier=classifier,
        prices=prices,
        positions=positions,
        dispatcher=dispatcher,
        poll_interval_seconds=settings.poll_interval_seconds,
        hlpmm_emitter_address=(
            settings.hlpmm_event_emitter_address if settings.hlpmm_enabled else None
        ),
    )
    dispatcher.on_token_orphaned = monitor.stop_watching

    status_service = StatusService(
        scheduler=scheduler,
        db=db,
        bot=application.bot,
        prices=prices,
        explorer_url=settings.block_explorer_url,
        enabled=settings.status_updates_enabled,
    )
    cleanup_service = CleanupService(db=db, scheduler=scheduler)

    # Shared with the chat command layer
    application.bot_data["monitor"] = monitor
    application.bot_data["prices"] = prices
    application.bot_data["db"] = db

    try:
        await monitor.start()
        status_service.start()
        cleanup_service.start()
        scheduler.start()

        logger.info(
            "bot_started",
            tokens=len(monitor.watched_tokens),
            hlpmm=settings.hlpmm_enabled,
        )

        stop_event = asyncio.Event()

        def signal_handler(signum, frame):
            logger.info("shutdown_signal_received", signal=signum)
            stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await stop_event.wait()

    finally:
        logger.info("bot_stopping")
        await monitor.stop()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await prices.close()
        await application.shutdown()
        await db.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
