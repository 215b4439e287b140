from __future__ import annotations
from typing import Optional, Sequence, Tuple

from .models import (
    Candle,
    DOWNTREND,
    MacdResult,
    SIDEWAY,
    SupportResistance,
    Trend,
    UPTREND,
)

# All functions take candles most-recent-first: candles[0] is the latest bar.

TREND_DEADBAND_PCT = 0.1


def pct_change(value: float, base: float) -> Optional[float]:
    """Percent distance of ``value`` from ``base``; None for a zero base."""
    if not base:
        return None
    return (value - base) / base * 100.0


def sma(candles: Sequence[Candle], period: int) -> Optional[float]:
    if period <= 0 or len(candles) < period:
        return None
    total = 0.0
    for i in range(period):
        total += candles[i].close
    return total / period


def ema(candles: Sequence[Candle], period: int) -> Optional[float]:
    """EMA seeded with the oldest close of the window, walked forward to the latest bar."""
    if period <= 0 or len(candles) < period:
        return None
    multiplier = 2.0 / (period + 1.0)
    value = candles[period - 1].close
    for i in range(period - 2, -1, -1):
        value = (candles[i].close - value) * multiplier + value
    return value


def rsi(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    if period <= 0 or len(candles) < period + 1:
        return None
    gains = 0.0
    losses = 0.0
    for i in range(period):
        ch = candles[i].close - candles[i + 1].close
        if ch > 0:
            gains += ch
        elif ch < 0:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(
    candles: Sequence[Candle],
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> MacdResult:
    """MACD line, signal and histogram.

    The signal line is the plain mean of the MACD recomputed on the windows
    starting 0..signal_period-1 bars back, not an EMA of the MACD series.
    Downstream scoring is tuned against this value, keep it as is.
    """
    if len(candles) < slow + signal_period:
        return MacdResult()

    fast_ema = ema(candles, fast)
    slow_ema = ema(candles, slow)
    if not fast_ema or not slow_ema:
        return MacdResult()
    line = fast_ema - slow_ema

    values = []
    for shift in range(signal_period):
        window = candles[shift:]
        f = ema(window, fast)
        s = ema(window, slow)
        if f and s:
            values.append(f - s)

    signal = sum(values) / len(values) if values else None
    histogram = line - signal if signal is not None else None
    return MacdResult(macd=line, signal=signal, histogram=histogram)


def volume_ma(candles: Sequence[Candle], period: int = 20) -> Optional[float]:
    if period <= 0 or len(candles) < period or not candles[0].volume:
        return None
    total = 0.0
    for i in range(period):
        total += candles[i].volume or 0.0
    return total / period


def support_resistance(candles: Sequence[Candle], lookback: int = 20) -> SupportResistance:
    if lookback <= 0 or len(candles) < lookback:
        return SupportResistance()
    window = candles[:lookback]
    return SupportResistance(
        support=min(c.low for c in window),
        resistance=max(c.high for c in window),
    )


def determine_trend(sma50: Optional[float], sma200: Optional[float]) -> Trend:
    if not sma50 or not sma200:
        return SIDEWAY
    diff = pct_change(sma50, sma200)
    if diff > TREND_DEADBAND_PCT:
        return UPTREND
    if diff < -TREND_DEADBAND_PCT:
        return DOWNTREND
    return SIDEWAY


def calculate_buy_sl_tp(entry_price: float, risk_pct: float = 1.0, reward_pct: float = 2.0) -> Tuple[float, float]:
    sl = entry_price * (1 - risk_pct / 100)
    tp = entry_price * (1 + reward_pct / 100)
    return sl, tp


def calculate_sell_sl_tp(entry_price: float, risk_pct: float = 1.0, reward_pct: float = 2.0) -> Tuple[float, float]:
    sl = entry_price * (1 + risk_pct / 100)
    tp = entry_price * (1 - reward_pct / 100)
    return sl, tp
