from buybot.monitor_types import DexSource, StatusMetrics, SwapAlert, SwapType
from buybot.utils.formatting import (
    DEFAULT_BUY_ICON_PATTERN,
    MAX_ICON_COUNT,
    escape_html,
    format_holdings,
    format_hourly_status_update,
    format_token_usd_price,
    format_transaction_alert,
    format_units,
    format_usd_compact,
    format_usd_rounded,
    get_swap_icon_count,
    get_swap_icons,
)

TOKEN = "0x" + "b2" * 20
TRADER = "0x" + "c3" * 20
EXPLORER = "https://scan.example/"


def _alert(**overrides) -> SwapAlert:
    values = dict(
        type=SwapType.BUY,
        source=DexSource.AMM,
        token_address=TOKEN,
        token_symbol="TKN",
        token_name="Token",
        trader=TRADER,
        tx_hash="0xabc",
        block_number=100,
        token_amount_raw=1000 * 10**18,
        token_amount="1000",
        counter_amount="1",
        counter_symbol="PAX",
        price_in_native=0.001,
        price_in_usd=0.01,
        usd_value=10.0,
        market_cap_usd=1_250_000.0,
        position_label="+100.00%",
        current_holdings="1000",
        holdings_display="1.000K",
        holdings_usd_display="$10",
    )
    values.update(overrides)
    return SwapAlert(**values)


def test_format_units_trims_trailing_zeros():
    assert format_units(1500 * 10**18, 18) == "1500"
    assert format_units(15 * 10**17, 18) == "1.5"
    assert format_units(1, 18) == "0.000000000000000001"
    assert format_units(0, 6) == "0"


def test_icon_count_tiers():
    assert get_swap_icon_count(0) == 1
    assert get_swap_icon_count(49.99) == 1
    assert get_swap_icon_count(50) == 3
    assert get_swap_icon_count(499.99) == 8
    assert get_swap_icon_count(500) == 11
    assert get_swap_icon_count(10_000) == MAX_ICON_COUNT


def test_icon_multiplier_scales_and_caps():
    assert get_swap_icon_count(100, 2) == 10
    assert get_swap_icon_count(10_000, 3) == MAX_ICON_COUNT
    # multipliers below one are ignored
    assert get_swap_icon_count(100, 0.1) == 5


def test_swap_icons_use_chat_pattern():
    assert get_swap_icons(SwapType.BUY, 100, 1, "🚀") == "🚀" * 3
    assert get_swap_icons(SwapType.BUY, 0, 1, "   ") == DEFAULT_BUY_ICON_PATTERN


def test_usd_formats():
    assert format_usd_compact(0) == "$0.00"
    assert format_usd_compact(None) == "$0.00"
    assert format_usd_compact(12.5) == "$12.5"
    assert format_usd_compact(1234.5) == "$1.23K"
    assert format_usd_compact(4_500_000) == "$4.5M"
    assert format_usd_rounded(1234.6) == "$1,235"
    assert format_usd_rounded(-3) == "$0"


def test_token_price_format():
    assert format_token_usd_price(1.5) == "$1.500"
    assert format_token_usd_price(0.01) == "$0.01"
    assert format_token_usd_price(0.000123456789) == "$0.00012345679"
    assert format_token_usd_price(0) == "$0.00"


def test_format_holdings():
    assert format_holdings(12.5) == "12.500"
    assert format_holdings(1500) == "1.500K"
    assert format_holdings(2_500_000) == "2.500M"


def test_escape_html():
    assert escape_html("<b>&") == "&lt;b&gt;&amp;"
    assert escape_html(None) == ""


def test_transaction_alert_contents():
    output = format_transaction_alert(_alert(), explorer_url=EXPLORER)

    assert output.startswith("<b>🚨 BUY DETECTED ON PAXEER NETWORK 🚨</b>")
    assert f'href="https://scan.example/token/{TOKEN}"' in output
    assert f'href="https://scan.example/address/{TRADER}"' in output
    assert 'href="https://scan.example/tx/0xabc"' in output
    assert "➡️ PAX: 1.000 ($10)" in output
    assert "⬅️ TKN: 1000.000" in output
    assert "🅿️ Position: +100.00%" in output
    assert "💼 Holdings: $10 (1.000K TKN)" in output
    assert "💲 Token Price: $0.01 USDC" in output
    assert "📈 Market Cap: $1.25M USDC" in output


def test_transaction_alert_escapes_token_metadata():
    alert = _alert(token_symbol="<T>", token_name="A & B", source=DexSource.HLPMM)
    output = format_transaction_alert(alert, explorer_url=EXPLORER)

    assert "(PaxFun)" in output
    assert "&lt;T&gt;" in output
    assert "A &amp; B" in output
    assert "<T>" not in output


def test_status_update_without_metrics():
    output = format_hourly_status_update(
        token_address=TOKEN,
        token_name="Token",
        token_symbol="TKN",
        metrics=StatusMetrics(),
        explorer_url=EXPLORER,
    )
    assert "<b>⏱️ Status Update</b>" in output
    assert "No live market stats available right now." in output


def test_status_update_with_metrics():
    metrics = StatusMetrics(
        market_cap_usd=2_000_000,
        volume_24h_usd=15_300,
        buyers_24h=3,
        sellers_24h=1,
        holders=1234,
        biggest_buy_24h_usd=950,
    )
    output = format_hourly_status_update(
        token_address=TOKEN,
        token_name="Token",
        token_symbol="TKN",
        metrics=metrics,
        explorer_url=EXPLORER,
        since_start_volume_usd=99.0,
    )
    assert "📈 Market Cap: $2M USDC" in output
    assert "📊 24h Volume: $15.3K USDC" in output
    assert "75.0% buyers / 25.0% sellers" in output
    assert "👥 Holders: 1,234" in output
    assert "🏆 Biggest Buy (24h): $950 USDC" in output
    assert "Since Start" not in output


def test_status_update_falls_back_to_since_start_totals():
    output = format_hourly_status_update(
        token_address=TOKEN,
        token_name="Token",
        token_symbol="TKN",
        metrics=StatusMetrics(holders=10),
        explorer_url=EXPLORER,
        since_start_volume_usd=1500.0,
        since_start_biggest_buy_usd=700.0,
    )
    assert "🕒 Since Start: Volume $1.5K USDC · Biggest Buy $700 USDC" in output
    assert "No live market stats" not in output
