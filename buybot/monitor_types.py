"""Shared types for the swap monitoring pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: Optional[str]) -> str:
    """Ensure address is lowercase and stripped."""
    return (value or "").strip().lower()


def same_address(left: Optional[str], right: Optional[str]) -> bool:
    a = normalize_address(left)
    return bool(a) and a == normalize_address(right)


class DexSource(str, Enum):
    """Trading venue that produced a swap."""

    AMM = "AMM"
    HLPMM = "HLPMM"


class SwapType(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TransferLog:
    """ERC-20 Transfer event decoded at the RPC boundary."""

    token_address: str
    from_address: str
    to_address: str
    value: int
    tx_hash: str
    block_number: int
    transaction_index: Optional[int] = None
    log_index: Optional[int] = None


@dataclass(frozen=True)
class SwapLog:
    """HLPMM event-emitter Swap event decoded at the RPC boundary."""

    pool: str
    sender: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee_amount: int
    tx_hash: str
    block_number: int
    transaction_index: Optional[int] = None
    log_index: Optional[int] = None


@dataclass(frozen=True)
class TxInfo:
    """Subset of a transaction needed for classification."""

    hash: str
    from_address: str
    to_address: Optional[str]
    value: int
    input: str
    block_number: Optional[int] = None
    transaction_index: Optional[int] = None


@dataclass(frozen=True)
class TokenInfo:
    name: str
    symbol: str
    decimals: int
    total_supply: int

    @property
    def total_supply_units(self) -> float:
        return self.total_supply / (10**self.decimals)


@dataclass(frozen=True)
class TokenPrice:
    """Normalized token price pair."""

    price_in_native: float
    price_in_usd: float


@dataclass(frozen=True)
class Classification:
    """Result of classifying an event as a trade."""

    type: SwapType
    trader: str
    token_address: str
    source: DexSource


@dataclass(frozen=True)
class PurchaseDetails:
    """Counter-asset paid for a buy."""

    symbol: str
    amount: str


@dataclass
class SwapAlert:
    """A fully resolved swap ready for delivery.

    Attributes:
        token_amount_raw: Bought amount in token base units.
        token_amount: Bought amount in whole tokens (decimal string).
        counter_amount: Counter-asset paid, decimal string.
        usd_value: Total USD value of the swap, used for min-buy filtering.
        current_holdings: Trader balance after the swap, decimal string,
            persisted as the next position snapshot.
    """

    type: SwapType
    source: DexSource
    token_address: str
    token_symbol: str
    token_name: str
    trader: str
    tx_hash: str
    block_number: int
    token_amount_raw: int
    token_amount: str
    counter_amount: str
    counter_symbol: str
    price_in_native: float
    price_in_usd: float
    usd_value: float
    market_cap_usd: float
    position_label: str
    current_holdings: str
    holdings_display: str
    holdings_usd_display: str


@dataclass
class StatusMetrics:
    """Market statistics shown in hourly status updates."""

    market_cap_usd: Optional[float] = None
    volume_24h_usd: Optional[float] = None
    buyers_24h: Optional[int] = None
    sellers_24h: Optional[int] = None
    holders: Optional[int] = None
    biggest_buy_24h_usd: Optional[float] = None
    sources: list[str] = field(default_factory=list)

    def missing(self) -> list[str]:
        return [
            f.name
            for f in fields(self)
            if f.name != "sources" and getattr(self, f.name) is None
        ]

    def is_complete(self) -> bool:
        return not self.missing()
