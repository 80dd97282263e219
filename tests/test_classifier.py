"""Tests for buy classification and counter-asset attribution."""

import pytest

from buybot.monitor.classifier import EventClassifier
from buybot.monitor_types import DexSource, SwapLog, SwapType, TransferLog, TxInfo

ROUTER = "0x" + "a1" * 20
TOKEN = "0x" + "b2" * 20
TRADER = "0x" + "c3" * 20
WETH = "0x" + "d4" * 20
USDC = "0x" + "e5" * 20
USID = "0x" + "e6" * 20
PAIR = "0x" + "f7" * 20
POOL = "0x" + "f8" * 20
FACTORY = "0x" + "f9" * 20


class FakeChain:
    def __init__(self, decoded=None, pools=None) -> None:
        self.decoded = decoded
        self.pools = pools or {}
        self.pool_calls = []

    def decode_router_call(self, input_data):
        if self.decoded is None:
            raise ValueError("Could not find any function with matching selector")
        return self.decoded

    async def get_symbol_and_decimals(self, token_address):
        assert token_address == USDC
        return "USDC", 6

    async def pool_to_token(self, factory_address, pool_address):
        self.pool_calls.append(pool_address)
        return self.pools.get(pool_address, "0x" + "0" * 40)


def _classifier(chain: FakeChain) -> EventClassifier:
    return EventClassifier(
        chain=chain,
        router_address=ROUTER,
        wrapped_native_address=WETH,
        native_symbol="PAX",
        hlpmm_factory_address=FACTORY,
        hlpmm_quote_address=USID,
    )


def _transfer(sender: str, recipient: str, value: int = 10**18) -> TransferLog:
    return TransferLog(
        token_address=TOKEN,
        from_address=sender,
        to_address=recipient,
        value=value,
        tx_hash="0xabc",
        block_number=100,
        transaction_index=0,
    )


def _tx(to_address: str = ROUTER, value: int = 0) -> TxInfo:
    return TxInfo(
        hash="0xabc",
        from_address=TRADER,
        to_address=to_address,
        value=value,
        input="0x7ff36ab5",
    )


def _swap(token_in: str = USID, token_out: str = TOKEN) -> SwapLog:
    return SwapLog(
        pool=POOL,
        sender=ROUTER,
        token_in=token_in,
        token_out=token_out,
        amount_in=25 * 10**18,
        amount_out=1000 * 10**18,
        fee_amount=0,
        tx_hash="0xdef",
        block_number=200,
    )


class TestClassifyTransfer:
    def test_transfer_from_router_is_buy(self) -> None:
        result = _classifier(FakeChain()).classify_transfer(
            _transfer(ROUTER, TRADER), _tx()
        )
        assert result is not None
        assert result.type == SwapType.BUY
        assert result.trader == TRADER
        assert result.token_address == TOKEN
        assert result.source == DexSource.AMM

    def test_multi_hop_delivery_to_caller_is_buy(self) -> None:
        result = _classifier(FakeChain()).classify_transfer(
            _transfer(PAIR, TRADER), _tx(to_address=ROUTER)
        )
        assert result is not None
        assert result.trader == TRADER

    def test_pair_transfer_outside_router_call_is_ignored(self) -> None:
        other = "0x" + "12" * 20
        result = _classifier(FakeChain()).classify_transfer(
            _transfer(PAIR, TRADER), _tx(to_address=other)
        )
        assert result is None

    def test_transfer_into_router_is_not_a_buy(self) -> None:
        result = _classifier(FakeChain()).classify_transfer(
            _transfer(TRADER, ROUTER), _tx()
        )
        assert result is None


class TestClassifySwap:
    @pytest.mark.asyncio
    async def test_quote_in_swap_of_watched_token_is_buy(self) -> None:
        result = await _classifier(FakeChain()).classify_swap(_swap(), {TOKEN})
        assert result is not None
        assert result.source == DexSource.HLPMM
        assert result.token_address == TOKEN

    @pytest.mark.asyncio
    async def test_token_in_swap_is_ignored(self) -> None:
        result = await _classifier(FakeChain()).classify_swap(
            _swap(token_in=TOKEN, token_out=USID), {TOKEN}
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_pool_lookup_resolves_token(self) -> None:
        chain = FakeChain(pools={POOL: TOKEN})
        classifier = _classifier(chain)
        unknown = "0x" + "34" * 20

        first = await classifier.classify_swap(_swap(token_out=unknown), {TOKEN})
        second = await classifier.classify_swap(_swap(token_out=unknown), {TOKEN})

        assert first is not None and first.token_address == TOKEN
        assert second is not None
        assert chain.pool_calls == [POOL]

    @pytest.mark.asyncio
    async def test_unwatched_pool_is_ignored(self) -> None:
        unknown = "0x" + "34" * 20
        result = await _classifier(FakeChain()).classify_swap(
            _swap(token_out=unknown), {TOKEN}
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_disabled_without_quote_token(self) -> None:
        classifier = EventClassifier(
            chain=FakeChain(), router_address=ROUTER, wrapped_native_address=WETH
        )
        assert await classifier.classify_swap(_swap(), {TOKEN}) is None


class TestPurchaseDetails:
    @pytest.mark.asyncio
    async def test_native_input(self) -> None:
        chain = FakeChain(
            decoded=(
                "swapExactETHForTokens",
                {"amountOutMin": 1, "path": [WETH, TOKEN]},
            )
        )
        details = await _classifier(chain).resolve_purchase_details(
            _tx(value=2 * 10**18), TOKEN, "9"
        )
        assert details.symbol == "PAX"
        assert details.amount == "2"

    @pytest.mark.asyncio
    async def test_token_input_uses_token_metadata(self) -> None:
        chain = FakeChain(
            decoded=(
                "swapExactTokensForTokens",
                {"amountIn": 5_000_000, "amountOutMin": 1, "path": [USDC, WETH, TOKEN]},
            )
        )
        details = await _classifier(chain).resolve_purchase_details(_tx(), TOKEN, "9")
        assert details.symbol == "USDC"
        assert details.amount == "5"

    @pytest.mark.asyncio
    async def test_undecodable_input_uses_tx_value(self) -> None:
        details = await _classifier(FakeChain()).resolve_purchase_details(
            _tx(value=15 * 10**17), TOKEN, "9"
        )
        assert details.symbol == "PAX"
        assert details.amount == "1.5"

    @pytest.mark.asyncio
    async def test_undecodable_input_without_value_uses_estimate(self) -> None:
        details = await _classifier(FakeChain()).resolve_purchase_details(
            _tx(value=0), TOKEN, "0.75"
        )
        assert details.amount == "0.75"

    @pytest.mark.asyncio
    async def test_path_to_other_token_uses_estimate(self) -> None:
        other = "0x" + "56" * 20
        chain = FakeChain(
            decoded=(
                "swapExactETHForTokens",
                {"amountOutMin": 1, "path": [WETH, other]},
            )
        )
        details = await _classifier(chain).resolve_purchase_details(
            _tx(value=10**18), TOKEN, "0.75"
        )
        assert details.symbol == "PAX"
        assert details.amount == "0.75"
