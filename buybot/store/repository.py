"""High-level database operations."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from buybot.monitor_types import normalize_address

from .db import (
    ChatAlertLinks,
    ChatSettings,
    DetectedTransaction,
    HourlyStatusDelivery,
    TraderPosition,
    WatchedToken,
)

HOURLY_STATUS_RETENTION_HOURS = 48
MEDIA_TYPES = ("photo", "animation")
ALERT_LINK_PLATFORMS = ("website", "telegram", "x")


class Repository:
    """CRUD utilities wrapping SQLModel sessions."""

    def __init__(self, session) -> None:
        self.session = session

    def _insert(self, model):
        """Dialect insert supporting ON CONFLICT clauses."""
        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    # Watched tokens

    async def add_watched_token(
        self, chat_id: int, token_address: str, symbol: str, name: str
    ) -> bool:
        stmt = (
            self._insert(WatchedToken)
            .values(
                chat_id=chat_id,
                token_address=normalize_address(token_address),
                symbol=symbol,
                name=name,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["chat_id", "token_address"])
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def remove_watched_token(self, chat_id: int, token_address: str) -> bool:
        result = await self.session.execute(
            delete(WatchedToken).where(
                WatchedToken.chat_id == chat_id,
                WatchedToken.token_address == normalize_address(token_address),
            )
        )
        await self.session.commit()
        return result.rowcount > 0

    async def remove_chat_watches(self, chat_id: int) -> List[str]:
        """Drop every watch of a chat, returning the affected token addresses."""
        watches = await self.list_chat_tokens(chat_id)
        tokens = [watch.token_address for watch in watches]
        await self.session.execute(
            delete(WatchedToken).where(WatchedToken.chat_id == chat_id)
        )
        await self.session.commit()
        return tokens

    async def list_chat_tokens(self, chat_id: int) -> List[WatchedToken]:
        result = await self.session.execute(
            select(WatchedToken)
            .where(WatchedToken.chat_id == chat_id)
            .order_by(WatchedToken.created_at)
        )
        return list(result.scalars().all())

    async def list_all_watches(self) -> List[WatchedToken]:
        result = await self.session.execute(
            select(WatchedToken).order_by(
                WatchedToken.token_address, WatchedToken.chat_id
            )
        )
        return list(result.scalars().all())

    async def list_watched_token_addresses(self) -> List[str]:
        result = await self.session.execute(
            select(WatchedToken.token_address).distinct()
        )
        return [row for row in result.scalars().all()]

    async def is_watching(self, chat_id: int, token_address: str) -> bool:
        result = await self.session.execute(
            select(WatchedToken.id).where(
                WatchedToken.chat_id == chat_id,
                WatchedToken.token_address == normalize_address(token_address),
            )
        )
        return result.first() is not None

    async def has_watchers(self, token_address: str) -> bool:
        result = await self.session.execute(
            select(WatchedToken.id)
            .where(WatchedToken.token_address == normalize_address(token_address))
            .limit(1)
        )
        return result.first() is not None

    async def get_token_watchers(self, token_address: str) -> List[WatchedToken]:
        result = await self.session.execute(
            select(WatchedToken).where(
                WatchedToken.token_address == normalize_address(token_address)
            )
        )
        return list(result.scalars().all())

    async def set_watched_token_media(
        self, chat_id: int, token_address: str, media_type: str, file_id: str
    ) -> None:
        if media_type not in MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {media_type}")
        await self.session.execute(
            update(WatchedToken)
            .where(
                WatchedToken.chat_id == chat_id,
                WatchedToken.token_address == normalize_address(token_address),
            )
            .values(alert_media_type=media_type, alert_media_file_id=file_id)
        )
        await self.session.commit()

    async def clear_watched_token_media(self, chat_id: int, token_address: str) -> None:
        await self.session.execute(
            update(WatchedToken)
            .where(
                WatchedToken.chat_id == chat_id,
                WatchedToken.token_address == normalize_address(token_address),
            )
            .values(alert_media_type=None, alert_media_file_id=None)
        )
        await self.session.commit()

    # Detected transactions

    async def has_detected_transaction(self, tx_hash: str) -> bool:
        result = await self.session.execute(
            select(DetectedTransaction.id).where(
                DetectedTransaction.tx_hash == tx_hash.lower()
            )
        )
        return result.first() is not None

    async def save_detected_transaction(
        self,
        tx_hash: str,
        token_address: str,
        tx_type: str,
        trader_address: str,
        token_amount: str,
        eth_amount: str,
        value_usd: Optional[float] = None,
        commit: bool = True,
    ) -> bool:
        """Insert a detection row; False when the hash was already recorded."""
        stmt = (
            self._insert(DetectedTransaction)
            .values(
                tx_hash=tx_hash.lower(),
                token_address=normalize_address(token_address),
                type=tx_type,
                trader_address=normalize_address(trader_address),
                token_amount=token_amount,
                eth_amount=eth_amount,
                transaction_value_usd=value_usd,
                detected_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["tx_hash"])
        )
        result = await self.session.execute(stmt)
        if commit:
            await self.session.commit()
        return result.rowcount == 1

    async def get_trade_summary(
        self, token_address: str
    ) -> Tuple[Optional[float], Optional[float]]:
        """Return (total USD volume, biggest USD buy) over all detections."""
        token = normalize_address(token_address)
        result = await self.session.execute(
            select(
                func.sum(DetectedTransaction.transaction_value_usd),
                func.max(DetectedTransaction.transaction_value_usd),
            ).where(
                DetectedTransaction.token_address == token,
                DetectedTransaction.type == "buy",
            )
        )
        volume, biggest = result.one()
        return (
            float(volume) if volume is not None else None,
            float(biggest) if biggest is not None else None,
        )

    # Trader positions

    async def get_trader_position(
        self, token_address: str, trader_address: str
    ) -> Optional[TraderPosition]:
        return await self.session.get(
            TraderPosition,
            (normalize_address(token_address), normalize_address(trader_address)),
        )

    async def upsert_trader_position(
        self,
        token_address: str,
        trader_address: str,
        holdings_token: str,
        commit: bool = True,
    ) -> None:
        now = datetime.utcnow()
        stmt = self._insert(TraderPosition).values(
            token_address=normalize_address(token_address),
            trader_address=normalize_address(trader_address),
            holdings_token=holdings_token,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["token_address", "trader_address"],
            set_={"holdings_token": holdings_token, "updated_at": now},
        )
        await self.session.execute(stmt)
        if commit:
            await self.session.commit()

    # Chat settings

    async def get_chat_settings(self, chat_id: int) -> ChatSettings:
        """Return stored settings, or defaults when the chat has none."""
        stored = await self.session.get(ChatSettings, chat_id)
        if stored is None:
            return ChatSettings(chat_id=chat_id)
        # clamped into a transient copy; the stored row is left untouched
        return ChatSettings(
            chat_id=chat_id,
            min_buy_usdc=max(0.0, float(stored.min_buy_usdc or 0)),
            icon_multiplier=max(1, int(stored.icon_multiplier or 1)),
            buy_icon_pattern=stored.buy_icon_pattern,
            alert_media_type=stored.alert_media_type,
            alert_media_file_id=stored.alert_media_file_id,
            updated_at=stored.updated_at,
        )

    async def _upsert_chat_settings(self, chat_id: int, **values) -> None:
        values["updated_at"] = datetime.utcnow()
        stmt = self._insert(ChatSettings).values(chat_id=chat_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["chat_id"], set_=values)
        await self.session.execute(stmt)
        await self.session.commit()

    async def set_min_buy_usdc(self, chat_id: int, min_buy_usdc: float) -> None:
        await self._upsert_chat_settings(chat_id, min_buy_usdc=max(0.0, min_buy_usdc))

    async def set_icon_multiplier(self, chat_id: int, icon_multiplier: int) -> None:
        await self._upsert_chat_settings(
            chat_id, icon_multiplier=max(1, int(icon_multiplier))
        )

    async def set_buy_icon_pattern(self, chat_id: int, pattern: str) -> None:
        await self._upsert_chat_settings(chat_id, buy_icon_pattern=pattern.strip())

    async def set_alert_media(self, chat_id: int, media_type: str, file_id: str) -> None:
        if media_type not in MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {media_type}")
        await self._upsert_chat_settings(
            chat_id, alert_media_type=media_type, alert_media_file_id=file_id
        )

    async def clear_alert_media(self, chat_id: int) -> None:
        await self._upsert_chat_settings(
            chat_id, alert_media_type=None, alert_media_file_id=None
        )

    # Alert links

    async def get_alert_links(self, chat_id: int) -> ChatAlertLinks:
        links = await self.session.get(ChatAlertLinks, chat_id)
        return links or ChatAlertLinks(chat_id=chat_id)

    async def set_alert_link(self, chat_id: int, platform: str, url: str) -> None:
        if platform not in ALERT_LINK_PLATFORMS:
            raise ValueError(f"Unsupported link platform: {platform}")
        values = {f"{platform}_url": url, "updated_at": datetime.utcnow()}
        stmt = self._insert(ChatAlertLinks).values(chat_id=chat_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["chat_id"], set_=values)
        await self.session.execute(stmt)
        await self.session.commit()

    async def clear_alert_links(self, chat_id: int) -> None:
        await self.session.execute(
            delete(ChatAlertLinks).where(ChatAlertLinks.chat_id == chat_id)
        )
        await self.session.commit()

    # Hourly status marks

    async def claim_hourly_status(
        self, bucket: str, token_address: str, chat_id: int
    ) -> bool:
        """Claim the status broadcast for a bucket; False if already claimed."""
        stmt = (
            self._insert(HourlyStatusDelivery)
            .values(
                bucket=bucket,
                token_address=normalize_address(token_address),
                chat_id=chat_id,
                delivered_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(
                index_elements=["bucket", "token_address", "chat_id"]
            )
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def purge_hourly_status_marks(
        self, retention_hours: int = HOURLY_STATUS_RETENTION_HOURS
    ) -> int:
        cutoff = datetime.utcnow() - timedelta(hours=retention_hours)
        result = await self.session.execute(
            delete(HourlyStatusDelivery).where(
                HourlyStatusDelivery.delivered_at < cutoff
            )
        )
        await self.session.commit()
        return result.rowcount
