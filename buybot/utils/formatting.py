"""Helpers for Telegram HTML alert formatting."""

from __future__ import annotations

import html
import math
from decimal import Decimal
from typing import List, Optional

from buybot.monitor_types import DexSource, StatusMetrics, SwapAlert, SwapType

DEFAULT_BUY_ICON_PATTERN = "🟢⚔️"
SELL_ICON_PATTERN = "🔴⚔️"
MAX_ICON_COUNT = 32

# (minimum USD value, icon count), highest threshold first.
ICON_TIERS = (
    (10_000, 32),
    (5_000, 24),
    (2_500, 18),
    (1_000, 14),
    (500, 11),
    (250, 8),
    (100, 5),
    (50, 3),
)

COMPACT_SUFFIXES = ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K"))


def escape_html(text: object) -> str:
    """Escape text for Telegram HTML parse mode."""
    if text is None:
        return ""
    return html.escape(str(text), quote=True)


def format_units(raw: int, decimals: int) -> str:
    """Render an integer base-unit amount as a plain decimal string."""
    value = Decimal(int(raw)).scaleb(-int(decimals))
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def to_float(value: object) -> float:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def _trim(number: str) -> str:
    if "." in number:
        number = number.rstrip("0").rstrip(".")
    return number


def get_swap_icon_count(usd_value: float, icon_multiplier: float = 1) -> int:
    value = max(0.0, usd_value) if math.isfinite(usd_value) else 0.0
    count = 1
    for threshold, tier_count in ICON_TIERS:
        if value >= threshold:
            count = tier_count
            break
    multiplier = max(1.0, icon_multiplier) if math.isfinite(icon_multiplier) else 1.0
    return min(MAX_ICON_COUNT, max(1, round(count * multiplier)))


def get_swap_icons(
    swap_type: SwapType,
    usd_value: float,
    icon_multiplier: float = 1,
    buy_icon_pattern: str = DEFAULT_BUY_ICON_PATTERN,
) -> str:
    count = get_swap_icon_count(usd_value, icon_multiplier)
    if swap_type == SwapType.BUY:
        pattern = (buy_icon_pattern or "").strip() or DEFAULT_BUY_ICON_PATTERN
    else:
        pattern = SELL_ICON_PATTERN
    return pattern * max(1, math.ceil(count / 2))


def format_usd_compact(value: Optional[float]) -> str:
    """Compact USD amount such as ``$1.23K`` or ``$4.5M``."""
    if value is None or not math.isfinite(value) or value <= 0:
        return "$0.00"
    for threshold, suffix in COMPACT_SUFFIXES:
        if value >= threshold:
            return f"${_trim(f'{value / threshold:.2f}')}{suffix}"
    return f"${_trim(f'{value:.2f}')}"


def format_token_usd_price(value: float) -> str:
    """Unit price: 3 decimals from $1, up to 8 significant digits below."""
    if not math.isfinite(value) or value <= 0:
        return "$0.00"
    if value >= 1:
        return f"${value:.3f}"
    decimals = 8 - int(math.floor(math.log10(value))) - 1
    return f"${_trim(f'{value:.{decimals}f}')}"


def format_usd_rounded(value: float) -> str:
    """Whole-dollar amount with thousands separators."""
    return f"${max(0, round(to_float(value))):,}"


def format_holdings(amount: float) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.3f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.3f}K"
    return f"{amount:.3f}"


def format_transaction_alert(
    alert: SwapAlert,
    explorer_url: str,
    icon_multiplier: float = 1,
    buy_icon_pattern: str = DEFAULT_BUY_ICON_PATTERN,
    network_name: str = "Paxeer Network",
) -> str:
    """Render a swap alert as Telegram HTML."""
    explorer = explorer_url.rstrip("/")
    token_url = f"{explorer}/token/{alert.token_address}"
    wallet_url = f"{explorer}/address/{alert.trader}"
    tx_url = f"{explorer}/tx/{alert.tx_hash}"

    icons = get_swap_icons(alert.type, alert.usd_value, icon_multiplier, buy_icon_pattern)
    venue = " (PaxFun)" if alert.source == DexSource.HLPMM else ""
    action = "BUY" if alert.type == SwapType.BUY else "SELL"
    symbol = escape_html(alert.token_symbol)

    lines = [
        f"<b>🚨 {action} DETECTED ON {escape_html(network_name.upper())}{venue} 🚨</b>",
        "",
        f'<a href="{token_url}">{escape_html(alert.token_name)}</a> {action}!',
        icons,
        "",
        f"➡️ {escape_html(alert.counter_symbol)}: "
        f"{to_float(alert.counter_amount):.3f} ({format_usd_rounded(alert.usd_value)})",
        f"⬅️ {symbol}: {to_float(alert.token_amount):.3f}",
        f'👤 <a href="{wallet_url}">Buyer</a> / <a href="{tx_url}">Txn</a>',
        f"🅿️ Position: {escape_html(alert.position_label or 'NEW')}",
        f"💼 Holdings: {escape_html(alert.holdings_usd_display or '$0')} "
        f"({escape_html(alert.holdings_display or '0')} {symbol})",
        "",
        f"💲 Token Price: {format_token_usd_price(alert.price_in_usd)} USDC",
        f"📈 Market Cap: {format_usd_compact(alert.market_cap_usd)} USDC",
    ]
    return "\n".join(lines)


def format_hourly_status_update(
    token_address: str,
    token_name: str,
    token_symbol: str,
    metrics: StatusMetrics,
    explorer_url: str,
    since_start_volume_usd: Optional[float] = None,
    since_start_biggest_buy_usd: Optional[float] = None,
) -> str:
    """Render the periodic market summary; unknown metrics are left out."""
    token_url = f"{explorer_url.rstrip('/')}/token/{token_address}"
    lines: List[str] = []

    if metrics.market_cap_usd is not None:
        lines.append(f"📈 Market Cap: {format_usd_compact(metrics.market_cap_usd)} USDC")
    if metrics.volume_24h_usd is not None:
        lines.append(f"📊 24h Volume: {format_usd_compact(metrics.volume_24h_usd)} USDC")

    if metrics.buyers_24h is not None and metrics.sellers_24h is not None:
        buyers = max(0, metrics.buyers_24h)
        sellers = max(0, metrics.sellers_24h)
        total = buyers + sellers
        buyers_pct = buyers / total * 100 if total else 0.0
        sellers_pct = sellers / total * 100 if total else 0.0
        lines.append(
            f"⚖️ Buyers vs Sellers: {buyers_pct:.1f}% buyers / {sellers_pct:.1f}% sellers"
        )

    if metrics.holders is not None:
        lines.append(f"👥 Holders: {max(0, int(metrics.holders)):,}")
    if metrics.biggest_buy_24h_usd is not None:
        lines.append(
            f"🏆 Biggest Buy (24h): {format_usd_compact(metrics.biggest_buy_24h_usd)} USDC"
        )

    missing_window = metrics.volume_24h_usd is None or metrics.biggest_buy_24h_usd is None
    if missing_window and since_start_volume_usd is not None:
        parts = [f"Volume {format_usd_compact(since_start_volume_usd)} USDC"]
        if since_start_biggest_buy_usd is not None:
            parts.append(
                f"Biggest Buy {format_usd_compact(since_start_biggest_buy_usd)} USDC"
            )
        lines.append(f"🕒 Since Start: {' · '.join(parts)}")

    if not lines:
        lines.append("ℹ️ No live market stats available right now.")

    header = [
        "<b>⏱️ Status Update</b>",
        "",
        f'<a href="{token_url}">{escape_html(token_name)} ({escape_html(token_symbol)})</a>',
    ]
    return "\n".join(header + lines)
