from __future__ import annotations

from datetime import datetime, timezone, timedelta
from typing import Optional, Sequence

from .indicators import pct_change
from .models import BUY, BacktestResult, DOWNTREND, SELL, Signal, UPTREND, WAIT

ICT = timezone(timedelta(hours=7))  # Bangkok (UTC+7)

DEFAULT_CHART_URL = "https://www.tradingview.com/chart/?symbol=BTCUSD&interval={interval}"
RULE = "━━━━━━━━━━━━━━━━━━━━━━━━"


def _fmt_time(ts: str, tz=ICT) -> str:
    # Provider timestamps carry no offset and are UTC for crypto pairs.
    try:
        dt = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
    except ValueError:
        return str(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz).strftime("%Y-%m-%d %H:%M")


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "N/A"
    return f"${val:.2f}"


def _trend_emoji(trend: str) -> str:
    if trend == UPTREND:
        return "🟢"
    if trend == DOWNTREND:
        return "🔴"
    return "🟡"


def _confidence_emoji(confidence: int) -> str:
    if confidence >= 80:
        return "🔥"
    if confidence >= 60:
        return "✅"
    return "⚠️"


def _risk_emoji(risk_level: Optional[str]) -> str:
    return {"LOW": "🟢", "MEDIUM": "🟡", "HIGH": "🔴"}.get(risk_level or "", "⚪")


def _rsi_status(rsi: float) -> str:
    if rsi > 70:
        return "(Overbought)"
    if rsi < 30:
        return "(Oversold)"
    return "(Neutral)"


def _section(title: str) -> list:
    return [RULE, title, RULE]


def _format_no_signal(signal: Signal) -> str:
    return (
        f"⏱ Timeframe: {signal.timeframe_label}\n"
        f"Status: {signal.status}\n"
        f"Reason: {signal.reason or 'Unknown'}"
    )


def format_signal(signal: Signal, *, symbol: str = "BTC/USD", chart_url: str = DEFAULT_CHART_URL) -> str:
    """Render one signal as a LINE text message."""
    if signal.is_no_signal:
        return _format_no_signal(signal)

    lines = [
        f"📊 {symbol} Premium Signal",
        "",
        f"⏰ Timeframe: {signal.timeframe_label}",
        f"🕐 Time: {_fmt_time(signal.time)} (ICT)",
        f"💰 Price: {_fmt_price(signal.price)}",
        "",
    ]

    lines += _section("📈 Trend Analysis")
    lines.append(f"Trend: {_trend_emoji(signal.trend)} {signal.trend}")
    if signal.sma50 and signal.sma200:
        strength = pct_change(signal.sma50, signal.sma200)
        lines.append(f"SMA50: {_fmt_price(signal.sma50)}")
        lines.append(f"SMA200: {_fmt_price(signal.sma200)}")
        lines.append(f"Trend strength: {strength:.2f}%")
    lines.append("")

    lines.append(RULE)
    if signal.action == BUY:
        lines.append(f"🟢 ACTION: {BUY}")
    elif signal.action == SELL:
        lines.append(f"🔴 ACTION: {SELL}")
    else:
        lines.append(f"⏸ ACTION: {WAIT}")
    lines.append(RULE)
    lines.append("")

    if signal.sl is not None and signal.tp is not None:
        price = signal.price
        lines += _section("🎯 Entry / Exit Levels")
        lines.append(f"📍 Entry: {_fmt_price(price)}")
        lines.append(f"🛑 Stop Loss: {_fmt_price(signal.sl)} ({abs(price - signal.sl) / price * 100:.2f}%)")
        lines.append(f"🎯 Take Profit: {_fmt_price(signal.tp)} ({abs(signal.tp - price) / price * 100:.2f}%)")
        rr = signal.risk_reward
        if rr is not None:
            lines.append(f"📊 Risk/Reward: 1:{rr:.2f}")
        lines.append("")

        if signal.confidence:
            lines += _section("🎲 Confidence & Risk")
            lines.append(f"Confidence: {signal.confidence}/100 {_confidence_emoji(signal.confidence)}")
            if signal.risk_level:
                lines.append(f"Risk level: {_risk_emoji(signal.risk_level)} {signal.risk_level}")
            lines.append("")

    lines += _section("📊 Indicators")
    if signal.rsi is not None:
        lines.append(f"RSI(14): {signal.rsi:.2f} {_rsi_status(signal.rsi)}")
    if signal.macd is not None:
        lines.append(f"MACD: {signal.macd:.2f}")
        if signal.macd_signal is not None:
            lines.append(f"MACD Signal: {signal.macd_signal:.2f}")
        if signal.macd_histogram is not None:
            status = "(Bullish)" if signal.macd_histogram > 0 else "(Bearish)"
            lines.append(f"MACD Histogram: {signal.macd_histogram:.2f} {status}")
    vol_ratio = signal.volume_ratio
    if vol_ratio is not None:
        status = "(High)" if vol_ratio > 1.2 else ("(Low)" if vol_ratio < 0.8 else "(Normal)")
        lines.append(f"Volume: {'+' if vol_ratio > 1 else ''}{(vol_ratio - 1) * 100:.1f}% vs average {status}")
    if signal.support_level:
        lines.append(f"Support: {_fmt_price(signal.support_level)}")
    if signal.resistance_level:
        lines.append(f"Resistance: {_fmt_price(signal.resistance_level)}")
    lines.append("")

    lines += _section("📝 Pattern Analysis")
    lines.append(signal.pattern_text)
    lines.append("")

    if signal.entry_reason:
        lines += _section("✅ Entry Reason")
        lines.append(signal.entry_reason)
        lines.append("")

    if signal.exit_strategy:
        lines += _section("🚪 Exit Strategy")
        lines.append(signal.exit_strategy)
        lines.append("")

    lines.append(RULE)
    lines.append("📈 Chart:")
    lines.append(chart_url.replace("{interval}", signal.timeframe_label.lower()))
    return "\n".join(lines)


def format_summary(signals: Sequence[Signal], symbol: str = "BTC/USD") -> str:
    active = [s for s in signals if s.action != WAIT and not s.is_no_signal]
    header = f"📊 {symbol} Summary\n━━━━━━━━━━━━━━━━\n"
    if not active:
        return (
            header
            + "No active signals at this time.\n"
            "All timeframes showing WAIT status.\n\n"
            "Check individual timeframe messages for details."
        )

    body = [f"Active Signals: {len(active)}", ""]
    for s in active:
        body.append(f"{s.action} on {s.timeframe_label} - {_fmt_price(s.price)}")
    body.append("")
    body.append("Check individual messages for detailed analysis.")
    return header + "\n".join(body)


def format_backtest_result(result: BacktestResult, timeframe_label: str, lookback_days: int = 30) -> str:
    lines = [
        f"📊 Backtest Result ({timeframe_label})",
        f"Period: last {lookback_days} days",
        "",
    ]

    lines += _section("📈 Signals")
    lines.append(f"Total signals: {result.total_signals}")
    lines.append(f"BUY: {result.buy_signals} | SELL: {result.sell_signals} | WAIT: {result.wait_signals}")
    lines.append("")

    lines += _section("🎯 Performance")
    lines.append(f"Trades: {result.total_trades}")
    lines.append(f"Wins: {result.winning_trades} | Losses: {result.losing_trades}")
    lines.append(f"Win rate: {result.win_rate:.2f}%")
    lines.append("")

    lines += _section("💰 Profit Analysis")
    lines.append(f"Total profit: ${result.total_profit:.2f}")
    lines.append(f"Average profit: ${result.average_profit:.2f}")
    lines.append(f"Max drawdown: ${result.max_drawdown:.2f}")
    lines.append(f"Sharpe ratio: {result.sharpe_ratio:.2f}")
    lines.append("")

    recent = result.closed_trades()[-5:]
    if recent:
        lines += _section("📋 Recent Trades")
        for t in reversed(recent):
            mark = "✅" if t.result == "WIN" else "❌"
            lines.append(
                f"{mark} {t.action} @ {_fmt_price(t.entry_price)} -> {_fmt_price(t.exit_price)} "
                f"({t.profit_percent or 0.0:+.2f}%)"
            )
        lines.append("")

    lines.append("⚠️ Past performance does not guarantee future results.")
    return "\n".join(lines)


def format_help() -> str:
    return (
        "📱 Available commands\n"
        "═══════════════════\n\n"
        "📊 Signal by timeframe:\n"
        "• tf-15m (15 minutes)\n"
        "• tf-30m (30 minutes)\n"
        "• tf-1hr (1 hour)\n"
        "• tf-4hr (4 hours)\n\n"
        "📊 All configured timeframes:\n"
        "• signal\n"
        "• price\n"
        "• btc\n\n"
        "🧪 Backtest:\n"
        "• backtest\n\n"
        "💡 Use the buttons below to pick a timeframe."
    )
