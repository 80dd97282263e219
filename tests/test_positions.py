"""Tests for position-change labels and the prior-activity scan."""

import pytest

from buybot.monitor.positions import (
    NEW_POSITION,
    PositionTracker,
    format_position_percent,
    has_prior_event,
)
from buybot.monitor_types import TransferLog
from buybot.store.db import Database
from buybot.store.repository import Repository

TOKEN = "0x" + "b2" * 20
TRADER = "0x" + "c3" * 20
ROUTER = "0x" + "a1" * 20


def _event(block: int, index, tx_hash: str = "0x01") -> TransferLog:
    return TransferLog(
        token_address=TOKEN,
        from_address=ROUTER,
        to_address=TRADER,
        value=10**18,
        tx_hash=tx_hash,
        block_number=block,
        transaction_index=index,
    )


class FakeChain:
    """Serves wallet transfer history, optionally rejecting wide ranges."""

    def __init__(self, events=None, max_range=None, error=None) -> None:
        self.events = events or []
        self.max_range = max_range
        self.error = error
        self.calls = []

    async def get_transfer_logs(
        self, token_address, from_block, to_block, from_address=None, to_address=None
    ):
        self.calls.append((from_block, to_block, from_address, to_address))
        if self.error:
            raise self.error
        if self.max_range and to_block - from_block + 1 > self.max_range:
            raise ValueError("query returned more than 10000 results")
        return [
            event
            for event in self.events
            if from_block <= event.block_number <= to_block
            and (from_address is None or event.from_address == from_address)
            and (to_address is None or event.to_address == to_address)
        ]


async def _make_db(tmp_path) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'positions.db'}")
    db.connect()
    await db.init_models()
    return db


def test_format_position_percent():
    assert format_position_percent(150, 100) == "+50.00%"
    assert format_position_percent(400, 300) == "+33.33%"
    assert format_position_percent(100, 100) == "+0.00%"
    assert format_position_percent(50, 100) == "-50.00%"
    assert format_position_percent(10, 0) == "N/A"
    assert format_position_percent(10, float("nan")) == "N/A"


def test_has_prior_event_ordering():
    # earlier block always counts
    assert has_prior_event([_event(99, 5)], "0xabc", 100, 0)
    # same block only with a strictly smaller index
    assert has_prior_event([_event(100, 1)], "0xabc", 100, 2)
    assert not has_prior_event([_event(100, 2)], "0xabc", 100, 2)
    assert not has_prior_event([_event(100, None)], "0xabc", 100, 5)
    # the transaction being labelled is never its own history
    assert not has_prior_event([_event(99, 0, tx_hash="0xABC")], "0xabc", 100, 0)
    assert not has_prior_event([_event(101, 0)], "0xabc", 100, 0)


@pytest.mark.asyncio
async def test_snapshot_growth_is_percent_of_snapshot(tmp_path):
    db = await _make_db(tmp_path)
    async with db.session() as session:
        await Repository(session).upsert_trader_position(TOKEN, TRADER, "100")

    chain = FakeChain()
    tracker = PositionTracker(db, chain)
    label = await tracker.compute_label(TOKEN, TRADER, "0xabc", 100, 0, 150.0, 50.0)

    assert label == "+50.00%"
    assert chain.calls == []
    await db.dispose()


@pytest.mark.asyncio
async def test_shrunken_holdings_use_inferred_baseline(tmp_path):
    db = await _make_db(tmp_path)
    async with db.session() as session:
        await Repository(session).upsert_trader_position(TOKEN, TRADER, "500")

    tracker = PositionTracker(db, FakeChain())
    # sold down to 300 off-alert, then bought 100
    label = await tracker.compute_label(TOKEN, TRADER, "0xabc", 100, 0, 400.0, 100.0)
    assert label == "+33.33%"

    # everything was sold before this buy
    label = await tracker.compute_label(TOKEN, TRADER, "0xabc", 100, 0, 100.0, 100.0)
    assert label == NEW_POSITION
    await db.dispose()


@pytest.mark.asyncio
async def test_no_snapshot_and_no_history_is_new(tmp_path):
    db = await _make_db(tmp_path)
    chain = FakeChain()
    tracker = PositionTracker(db, chain)

    label = await tracker.compute_label(TOKEN, TRADER, "0xabc", 100, 0, 100.0, 100.0)

    assert label == NEW_POSITION
    assert (0, 100, TRADER, None) in chain.calls
    assert (0, 100, None, TRADER) in chain.calls
    await db.dispose()


@pytest.mark.asyncio
async def test_no_snapshot_with_history_uses_inferred_baseline(tmp_path):
    db = await _make_db(tmp_path)
    tracker = PositionTracker(db, FakeChain(events=[_event(40, 0)]))

    label = await tracker.compute_label(TOKEN, TRADER, "0xabc", 100, 0, 400.0, 100.0)

    assert label == "+33.33%"
    await db.dispose()


@pytest.mark.asyncio
async def test_range_limit_falls_back_to_windows(tmp_path):
    db = await _make_db(tmp_path)
    chain = FakeChain(events=[_event(50, 0)], max_range=1000)
    tracker = PositionTracker(db, chain, window_blocks=1000)

    found = await tracker.has_prior_interaction(TOKEN, TRADER, "0xabc", 2500, 0)

    assert found is True
    windows = sorted({(start, end) for start, end, _, _ in chain.calls})
    assert windows == [(0, 500), (0, 2500), (501, 1500), (1501, 2500)]
    await db.dispose()


@pytest.mark.asyncio
async def test_windowed_scan_without_history(tmp_path):
    db = await _make_db(tmp_path)
    chain = FakeChain(max_range=1000)
    tracker = PositionTracker(db, chain, window_blocks=1000)

    assert not await tracker.has_prior_interaction(TOKEN, TRADER, "0xabc", 1999, 0)
    assert (0, 999, TRADER, None) in chain.calls
    await db.dispose()


@pytest.mark.asyncio
async def test_other_errors_assume_no_history(tmp_path):
    db = await _make_db(tmp_path)
    chain = FakeChain(error=ConnectionError("connection reset"))
    tracker = PositionTracker(db, chain)

    assert not await tracker.has_prior_interaction(TOKEN, TRADER, "0xabc", 100, 0)
    assert len(chain.calls) == 2
    await db.dispose()
