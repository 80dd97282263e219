"""Fan-out of swap alerts to subscribed chats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import Forbidden, TelegramError

from buybot.monitor_types import SwapAlert
from buybot.store.db import ChatAlertLinks, ChatSettings, Database, WatchedToken
from buybot.store.repository import Repository
from buybot.utils.formatting import format_transaction_alert
from buybot.utils.logging import get_logger

logger = get_logger(__name__)

KICKED_MARKERS = (
    "bot was kicked",
    "bot was blocked",
    "bot is not a member",
    "bot was removed",
)

TokenOrphanedCallback = Callable[[str], Awaitable[None]]


def is_kicked_error(error: BaseException) -> bool:
    """True when Telegram says the bot can no longer post to the chat."""
    message = str(error).lower()
    if any(marker in message for marker in KICKED_MARKERS):
        return True
    return isinstance(error, Forbidden) and "kicked" in message


@dataclass(frozen=True)
class AlertLinks:
    website_url: Optional[str] = None
    telegram_url: Optional[str] = None
    x_url: Optional[str] = None


@dataclass(frozen=True)
class AlertMedia:
    media_type: str
    file_id: str


def resolve_media(watch: WatchedToken, settings: ChatSettings) -> Optional[AlertMedia]:
    """Per-token media wins over the chat default."""
    if watch.alert_media_type and watch.alert_media_file_id:
        return AlertMedia(watch.alert_media_type, watch.alert_media_file_id)
    if settings.alert_media_type and settings.alert_media_file_id:
        return AlertMedia(settings.alert_media_type, settings.alert_media_file_id)
    return None


def build_alert_keyboard(
    links: ChatAlertLinks,
    defaults: AlertLinks,
    get_funded_url: Optional[str] = None,
) -> Optional[InlineKeyboardMarkup]:
    buttons: List[InlineKeyboardButton] = []
    website = links.website_url or defaults.website_url
    telegram = links.telegram_url or defaults.telegram_url
    x_url = links.x_url or defaults.x_url
    if website:
        buttons.append(InlineKeyboardButton("🌐 Website", url=website))
    if telegram:
        buttons.append(InlineKeyboardButton("💬 Telegram", url=telegram))
    if x_url:
        buttons.append(InlineKeyboardButton("𝕏", url=x_url))

    rows: List[List[InlineKeyboardButton]] = []
    if buttons:
        rows.append(buttons)
    if get_funded_url:
        rows.append([InlineKeyboardButton("💰 Get Funded", url=get_funded_url)])
    return InlineKeyboardMarkup(rows) if rows else None


class AlertDispatcher:
    """Deliver an alert to every watcher and record it when anyone got it.

    A transaction is persisted (detection row and trader snapshot) only
    when at least one chat received the alert.
    """

    def __init__(
        self,
        db: Database,
        bot,
        explorer_url: str,
        default_links: Optional[AlertLinks] = None,
        get_funded_url: Optional[str] = None,
        on_token_orphaned: Optional[TokenOrphanedCallback] = None,
    ) -> None:
        self.db = db
        self.bot = bot
        self.explorer_url = explorer_url
        self.default_links = default_links or AlertLinks()
        self.get_funded_url = get_funded_url
        self.on_token_orphaned = on_token_orphaned
        self._removed_chats: Set[int] = set()

    async def dispatch(self, alert: SwapAlert) -> int:
        """Fan the alert out; return the number of chats that received it."""
        async with self.db.session() as session:
            repo = Repository(session)
            watchers = await repo.get_token_watchers(alert.token_address)

            delivered = 0
            for watch in watchers:
                if await self._deliver_to_chat(repo, watch, alert):
                    delivered += 1

            if delivered == 0:
                logger.warning(
                    "alert_not_delivered",
                    tx_hash=alert.tx_hash,
                    token=alert.token_address,
                    watchers=len(watchers),
                )
                return 0

            await repo.save_detected_transaction(
                tx_hash=alert.tx_hash,
                token_address=alert.token_address,
                tx_type=alert.type.value,
                trader_address=alert.trader,
                token_amount=str(alert.token_amount_raw),
                eth_amount=alert.counter_amount,
                value_usd=alert.usd_value if alert.price_in_usd > 0 else None,
                commit=False,
            )
            await repo.upsert_trader_position(
                alert.token_address,
                alert.trader,
                alert.current_holdings,
                commit=False,
            )
            await session.commit()

        logger.info(
            "alert_delivered",
            tx_hash=alert.tx_hash,
            token=alert.token_address,
            chats=delivered,
            usd=round(alert.usd_value, 2),
        )
        return delivered

    async def _deliver_to_chat(
        self, repo: Repository, watch: WatchedToken, alert: SwapAlert
    ) -> bool:
        chat_id = watch.chat_id
        settings = await repo.get_chat_settings(chat_id)
        if alert.usd_value < settings.min_buy_usdc:
            logger.debug(
                "alert_below_minimum",
                chat_id=chat_id,
                usd=alert.usd_value,
                minimum=settings.min_buy_usdc,
            )
            return False

        links = await repo.get_alert_links(chat_id)
        text = format_transaction_alert(
            alert,
            explorer_url=self.explorer_url,
            icon_multiplier=settings.icon_multiplier,
            buy_icon_pattern=settings.buy_icon_pattern,
        )
        keyboard = build_alert_keyboard(links, self.default_links, self.get_funded_url)
        media = resolve_media(watch, settings)

        try:
            if media:
                try:
                    await self._send_media(chat_id, media, text, keyboard)
                    return True
                except TelegramError as exc:
                    if is_kicked_error(exc):
                        raise
                    logger.warning(
                        "alert_media_failed",
                        chat_id=chat_id,
                        media_type=media.media_type,
                        error=str(exc),
                    )
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=keyboard,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
            return True
        except Exception as exc:
            logger.error(
                "alert_send_failed",
                chat_id=chat_id,
                tx_hash=alert.tx_hash,
                error=str(exc),
            )
            if is_kicked_error(exc):
                try:
                    await self._remove_chat(repo, chat_id)
                except Exception as cleanup_exc:
                    logger.error(
                        "chat_unsubscribe_failed",
                        chat_id=chat_id,
                        error=str(cleanup_exc),
                    )
            return False

    async def _send_media(
        self,
        chat_id: int,
        media: AlertMedia,
        caption: str,
        keyboard: Optional[InlineKeyboardMarkup],
    ) -> None:
        if media.media_type == "animation":
            await self.bot.send_animation(
                chat_id=chat_id,
                animation=media.file_id,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=keyboard,
            )
        else:
            await self.bot.send_photo(
                chat_id=chat_id,
                photo=media.file_id,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=keyboard,
            )

    async def _remove_chat(self, repo: Repository, chat_id: int) -> None:
        if chat_id in self._removed_chats:
            return
        self._removed_chats.add(chat_id)

        tokens = await repo.remove_chat_watches(chat_id)
        logger.warning("chat_removed_unsubscribed", chat_id=chat_id, tokens=tokens)
        for token in tokens:
            if await repo.has_watchers(token):
                continue
            if self.on_token_orphaned:
                await self.on_token_orphaned(token)
