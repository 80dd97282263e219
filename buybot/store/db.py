"""Database models and helpers."""

from __future__ import annotations

import os
import socket
import zlib
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import UniqueConstraint, delete, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)
from sqlalchemy.orm import sessionmaker
from sqlmodel import Field, SQLModel

from buybot.utils.formatting import DEFAULT_BUY_ICON_PATTERN
from buybot.utils.logging import get_logger

logger = get_logger(__name__)


class WatchedToken(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("chat_id", "token_address"),)

    id: int | None = Field(default=None, primary_key=True)
    chat_id: int = Field(index=True)
    token_address: str = Field(index=True)
    symbol: str
    name: str
    alert_media_type: str | None = Field(default=None)
    alert_media_file_id: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DetectedTransaction(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    tx_hash: str = Field(unique=True, index=True)
    token_address: str = Field(index=True)
    type: str
    trader_address: str
    token_amount: str
    eth_amount: str
    transaction_value_usd: float | None = Field(default=None)
    detected_at: datetime = Field(default_factory=datetime.utcnow)


class TraderPosition(SQLModel, table=True):
    token_address: str = Field(primary_key=True)
    trader_address: str = Field(primary_key=True)
    holdings_token: str
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ChatSettings(SQLModel, table=True):
    chat_id: int = Field(primary_key=True)
    min_buy_usdc: float = Field(default=0.0)
    icon_multiplier: int = Field(default=1)
    buy_icon_pattern: str = Field(default=DEFAULT_BUY_ICON_PATTERN)
    alert_media_type: str | None = Field(default=None)
    alert_media_file_id: str | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ChatAlertLinks(SQLModel, table=True):
    chat_id: int = Field(primary_key=True)
    website_url: str | None = Field(default=None)
    telegram_url: str | None = Field(default=None)
    x_url: str | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class HourlyStatusDelivery(SQLModel, table=True):
    bucket: str = Field(primary_key=True)
    token_address: str = Field(primary_key=True)
    chat_id: int = Field(primary_key=True)
    delivered_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class MonitorLock(SQLModel, table=True):
    name: str = Field(primary_key=True)
    owner: str
    acquired_at: datetime = Field(default_factory=datetime.utcnow)


def lock_key(name: str) -> int:
    """Stable signed 32-bit key for pg advisory locks."""
    value = zlib.crc32(name.encode("utf-8"))
    return value - (1 << 32) if value >= (1 << 31) else value


def _owner_is_stale(owner: str) -> bool:
    """True when a lock row names a dead process on this host."""
    host, _, pid = owner.rpartition(":")
    if host != socket.gethostname() or not pid.isdigit():
        return False
    try:
        os.kill(int(pid), 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


class Database:
    """Lightweight async database wrapper."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: AsyncEngine | None = None
        self._session_maker: sessionmaker | None = None
        self._lock_conn: AsyncConnection | None = None
        self._lock_name: str | None = None
        self._lock_owner = f"{socket.gethostname()}:{os.getpid()}"

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    def connect(self) -> None:
        """Initialise engine and sessionmaker."""
        if self._engine:
            return

        url = make_url(self.url)
        if url.get_backend_name() == "sqlite":
            database = url.database
            if database and database != ":memory:":
                Path(database).expanduser().resolve().parent.mkdir(
                    parents=True, exist_ok=True
                )

        self._engine = create_async_engine(self.url, echo=False, future=True)
        self._session_maker = sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init_models(self) -> None:
        """Create tables if they do not exist."""
        if not self._engine:
            raise RuntimeError("Database engine is not initialised")

        async with self._engine.begin() as conn:  # pragma: no cover - DDL
            await conn.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Return an async session context."""
        if not self._session_maker:
            raise RuntimeError("Database session maker is not initialised")

        async with self._session_maker() as session:
            yield session

    async def acquire_lock(self, name: str) -> bool:
        """Try to take the named process lock without waiting.

        PostgreSQL holds a session-level advisory lock on a dedicated
        connection; other backends claim a row in ``monitorlock``.
        """
        if not self._engine:
            raise RuntimeError("Database engine is not initialised")
        if self._lock_name:
            return self._lock_name == name

        if self.backend == "postgresql":
            conn = await self._engine.connect()
            result = await conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key(name)}
            )
            acquired = bool(result.scalar())
            await conn.commit()
            if not acquired:
                await conn.close()
                return False
            self._lock_conn = conn
        else:
            async with self.session() as session:
                existing = await session.get(MonitorLock, name)
                if existing and existing.owner != self._lock_owner:
                    if not _owner_is_stale(existing.owner):
                        return False
                    logger.warning(
                        "monitor_lock_stale_takeover", name=name, owner=existing.owner
                    )
                    await session.delete(existing)
                    await session.flush()
                    existing = None
                if not existing:
                    session.add(MonitorLock(name=name, owner=self._lock_owner))
                    try:
                        await session.commit()
                    except Exception as exc:
                        await session.rollback()
                        logger.warning(
                            "monitor_lock_claim_failed", name=name, error=str(exc)
                        )
                        return False

        self._lock_name = name
        logger.info("monitor_lock_acquired", name=name, owner=self._lock_owner)
        return True

    async def release_lock(self) -> None:
        name = self._lock_name
        if not name:
            return
        self._lock_name = None

        if self._lock_conn is not None:
            conn, self._lock_conn = self._lock_conn, None
            try:
                await conn.execute(
                    text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key(name)}
                )
                await conn.commit()
            finally:
                await conn.close()
        else:
            async with self.session() as session:
                await session.execute(
                    delete(MonitorLock).where(
                        MonitorLock.name == name,
                        MonitorLock.owner == self._lock_owner,
                    )
                )
                await session.commit()
        logger.info("monitor_lock_released", name=name)

    async def dispose(self) -> None:
        await self.release_lock()
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None


__all__ = [
    "Database",
    "WatchedToken",
    "DetectedTransaction",
    "TraderPosition",
    "ChatSettings",
    "ChatAlertLinks",
    "HourlyStatusDelivery",
    "MonitorLock",
    "lock_key",
]
