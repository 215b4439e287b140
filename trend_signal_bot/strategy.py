from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from .errors import InvalidInput
from .indicators import (
    calculate_buy_sl_tp,
    calculate_sell_sl_tp,
    determine_trend,
    macd,
    pct_change,
    rsi,
    sma,
    support_resistance,
    volume_ma,
)
from .models import (
    BUY,
    Candle,
    DOWNTREND,
    SELL,
    Signal,
    TimeframeConfig,
    UPTREND,
    WAIT,
    Action,
    RiskLevel,
    Trend,
    as_series,
)

log = logging.getLogger("strategy")

CandleFetcher = Callable[[str], Union[Sequence[Candle], Awaitable[Sequence[Candle]]]]


class SignalEngine:
    """Stateless SMA50/SMA200 trend engine with a scored pullback entry.

    One call to ``generate_signal`` evaluates the latest bar of a
    most-recent-first candle window. Nothing is kept between calls, so one
    engine can serve every timeframe and the backtest.
    """

    def __init__(
        self,
        *,
        fast_sma: int = 50,
        slow_sma: int = 200,
        rsi_period: int = 14,
        rsi_lower: float = 30.0,
        rsi_upper: float = 70.0,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        volume_period: int = 20,
        sr_lookback: int = 20,
        risk_pct: float = 1.0,
        reward_pct: float = 2.5,
        near_sma_pct: float = 1.0,
        max_entry_deviation_pct: float = 1.5,
        min_entry_score: int = 3,
        entry_volume_ratio: float = 1.1,
        confidence_volume_ratio: float = 1.2,
    ):
        self.fast_sma = fast_sma
        self.slow_sma = slow_sma
        self.rsi_period = rsi_period
        self.rsi_lower = rsi_lower
        self.rsi_upper = rsi_upper
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.volume_period = volume_period
        self.sr_lookback = sr_lookback

        # Entry rule
        self.risk_pct = risk_pct
        self.reward_pct = reward_pct
        self.near_sma_pct = near_sma_pct
        self.max_entry_deviation_pct = max_entry_deviation_pct
        self.min_entry_score = min_entry_score
        self.entry_volume_ratio = entry_volume_ratio
        self.confidence_volume_ratio = confidence_volume_ratio

    @classmethod
    def from_config(cls, cfg) -> "SignalEngine":
        return cls(
            rsi_period=cfg.rsi_period,
            macd_fast=cfg.macd_fast,
            macd_slow=cfg.macd_slow,
            macd_signal=cfg.macd_signal,
            volume_period=cfg.volume_period,
            sr_lookback=cfg.sr_lookback,
            risk_pct=cfg.risk_pct,
            reward_pct=cfg.reward_pct,
            near_sma_pct=cfg.near_sma_pct,
            max_entry_deviation_pct=cfg.max_entry_deviation_pct,
            min_entry_score=cfg.min_entry_score,
            entry_volume_ratio=cfg.entry_volume_ratio,
            confidence_volume_ratio=cfg.confidence_volume_ratio,
        )

    @property
    def min_history(self) -> int:
        return self.slow_sma

    def generate_signal(self, candles: Sequence[Candle], timeframe_label: str) -> Signal:
        series = as_series(candles)
        if not len(series):
            raise InvalidInput(f"no candles for {timeframe_label}")

        last = series.latest
        sma50 = sma(series, self.fast_sma)
        sma200 = sma(series, self.slow_sma)

        if not sma50 or not sma200:
            return Signal.no_signal(
                timeframe_label,
                last.datetime,
                last.close,
                reason=f"Need at least {self.slow_sma} candles for SMA{self.slow_sma}",
                pattern_text="Not enough data for analysis",
                sma50=sma50,
                sma200=sma200,
            )

        rsi_val = rsi(series, self.rsi_period)
        m = macd(series, self.macd_fast, self.macd_slow, self.macd_signal)
        vol_ma = volume_ma(series, self.volume_period)
        vol_ratio = (last.volume / vol_ma) if (last.volume and vol_ma) else None
        sr = support_resistance(series, self.sr_lookback)

        trend = determine_trend(sma50, sma200)
        price = last.close
        price_dev = pct_change(price, sma50)
        trend_gap = pct_change(sma50, sma200)

        action: Action = WAIT
        sl: Optional[float] = None
        tp: Optional[float] = None

        if trend == UPTREND:
            score, conditions = self._calc_buy_score(price_dev, rsi_val, m.histogram, vol_ratio)
            if score >= self.min_entry_score and price_dev <= self.max_entry_deviation_pct:
                action = BUY
                sl, tp = calculate_buy_sl_tp(price, self.risk_pct, self.reward_pct)
                pattern = (
                    "🟢 STRONG BUY SIGNAL\n\n"
                    f"Trend: Confirmed UPTREND (SMA50 > SMA200 by {trend_gap:.2f}%)\n"
                    f"Entry: ${price:.2f}\n"
                    f"Support Level: {_fmt_level(sr.support)}\n"
                    f"Resistance Level: {_fmt_level(sr.resistance)}\n\n"
                    "✅ Confirmation Signals:\n" + "\n".join(conditions)
                )
            else:
                pattern = (
                    "Uptrend detected but waiting for better entry:\n"
                    f"• Price deviation: {price_dev:.2f}%\n"
                    f"• Current score: {score}/7\n"
                    "• Need: Price pullback to SMA50 or stronger confirmation"
                )
        elif trend == DOWNTREND:
            score, conditions = self._calc_sell_score(price_dev, rsi_val, m.histogram, vol_ratio)
            if score >= self.min_entry_score and price_dev >= -self.max_entry_deviation_pct:
                action = SELL
                sl, tp = calculate_sell_sl_tp(price, self.risk_pct, self.reward_pct)
                pattern = (
                    "🔴 STRONG SELL SIGNAL\n\n"
                    f"Trend: Confirmed DOWNTREND (SMA50 < SMA200 by {-trend_gap:.2f}%)\n"
                    f"Entry: ${price:.2f}\n"
                    f"Support Level: {_fmt_level(sr.support)}\n"
                    f"Resistance Level: {_fmt_level(sr.resistance)}\n\n"
                    "✅ Confirmation Signals:\n" + "\n".join(conditions)
                )
            else:
                pattern = (
                    "Downtrend detected but waiting for better entry:\n"
                    f"• Price deviation: {price_dev:.2f}%\n"
                    f"• Current score: {score}/7\n"
                    "• Need: Price bounce to SMA50 or stronger confirmation"
                )
        else:
            pattern = (
                "Sideways market detected:\n"
                f"• SMA50: ${sma50:.2f}\n"
                f"• SMA200: ${sma200:.2f}\n"
                f"• Difference: {trend_gap:.2f}%\n"
                "• Wait for clear trend confirmation"
            )

        confidence = 0
        risk_level: Optional[RiskLevel] = None
        entry_reason: Optional[str] = None
        exit_strategy: Optional[str] = None
        if action != WAIT:
            confidence = self._calc_confidence(trend, rsi_val, m.macd, m.histogram, vol_ratio, price_dev)
            risk_level = self._risk_level(confidence)
            entry_reason = self._entry_reason(action, rsi_val, m.histogram, vol_ratio, price_dev)
            exit_strategy = self._exit_strategy(action, sl, tp, price)

        return Signal(
            timeframe_label=timeframe_label,
            time=last.datetime,
            price=price,
            trend=trend,
            action=action,
            sl=sl,
            tp=tp,
            pattern_text=pattern,
            sma50=sma50,
            sma200=sma200,
            rsi=rsi_val,
            macd=m.macd,
            macd_signal=m.signal,
            macd_histogram=m.histogram,
            volume=last.volume or None,
            volume_ma=vol_ma,
            support_level=sr.support,
            resistance_level=sr.resistance,
            confidence=confidence,
            risk_level=risk_level,
            entry_reason=entry_reason,
            exit_strategy=exit_strategy,
        )

    def _rsi_healthy(self, rsi_val: Optional[float]) -> bool:
        return rsi_val is not None and self.rsi_lower < rsi_val < self.rsi_upper

    def _calc_buy_score(
        self,
        price_dev: float,
        rsi_val: Optional[float],
        histogram: Optional[float],
        vol_ratio: Optional[float],
    ) -> Tuple[int, List[str]]:
        score = 0
        b = []

        if price_dev <= self.near_sma_pct:
            score += 2
            b.append("Price near support (SMA50)")

        if self._rsi_healthy(rsi_val):
            score += 2
            b.append(f"RSI at {rsi_val:.1f} (healthy)")

        if histogram is not None and histogram > 0:
            score += 2
            b.append("MACD showing bullish momentum")

        if vol_ratio is not None and vol_ratio > self.entry_volume_ratio:
            score += 1
            b.append(f"Volume {vol_ratio * 100:.0f}% above average")

        return score, b

    def _calc_sell_score(
        self,
        price_dev: float,
        rsi_val: Optional[float],
        histogram: Optional[float],
        vol_ratio: Optional[float],
    ) -> Tuple[int, List[str]]:
        score = 0
        b = []

        if price_dev >= -self.near_sma_pct:
            score += 2
            b.append("Price near resistance (SMA50)")

        if self._rsi_healthy(rsi_val):
            score += 2
            b.append(f"RSI at {rsi_val:.1f} (healthy)")

        if histogram is not None and histogram < 0:
            score += 2
            b.append("MACD showing bearish momentum")

        if vol_ratio is not None and vol_ratio > self.entry_volume_ratio:
            score += 1
            b.append(f"Volume {vol_ratio * 100:.0f}% above average")

        return score, b

    def _calc_confidence(
        self,
        trend: Trend,
        rsi_val: Optional[float],
        macd_line: Optional[float],
        histogram: Optional[float],
        vol_ratio: Optional[float],
        price_dev: float,
    ) -> int:
        confidence = 50

        if trend in (UPTREND, DOWNTREND):
            confidence += 20

        if rsi_val is not None:
            if trend in (UPTREND, DOWNTREND) and self._rsi_healthy(rsi_val):
                confidence += 15
            elif rsi_val < self.rsi_lower or rsi_val > self.rsi_upper:
                confidence -= 10  # overbought / oversold

        if macd_line is not None and histogram is not None:
            if trend == UPTREND and histogram > 0:
                confidence += 15
            elif trend == DOWNTREND and histogram < 0:
                confidence += 15

        if vol_ratio is not None and vol_ratio > self.confidence_volume_ratio:
            confidence += 10

        if abs(price_dev) < self.near_sma_pct:
            confidence += 10

        return min(100, max(0, confidence))

    @staticmethod
    def _risk_level(confidence: int) -> RiskLevel:
        # Higher confidence means lower risk.
        if confidence >= 75:
            return "LOW"
        if confidence >= 50:
            return "MEDIUM"
        return "HIGH"

    def _entry_reason(
        self,
        action: Action,
        rsi_val: Optional[float],
        histogram: Optional[float],
        vol_ratio: Optional[float],
        price_dev: float,
    ) -> str:
        reasons = []
        high_volume = vol_ratio is not None and vol_ratio > self.confidence_volume_ratio

        if action == BUY:
            reasons.append("✅ Uptrend confirmed (SMA50 > SMA200)")
            if rsi_val is not None and rsi_val < 50:
                reasons.append(f"✅ RSI at {rsi_val:.1f} (not overbought)")
            if histogram is not None and histogram > 0:
                reasons.append("✅ MACD bullish momentum")
            if high_volume:
                reasons.append(f"✅ High volume ({vol_ratio * 100:.0f}% above average)")
            if price_dev < 0:
                reasons.append("✅ Price below SMA50 (support level)")
        elif action == SELL:
            reasons.append("✅ Downtrend confirmed (SMA50 < SMA200)")
            if rsi_val is not None and rsi_val > 50:
                reasons.append(f"✅ RSI at {rsi_val:.1f} (not oversold)")
            if histogram is not None and histogram < 0:
                reasons.append("✅ MACD bearish momentum")
            if high_volume:
                reasons.append(f"✅ High volume ({vol_ratio * 100:.0f}% above average)")
            if price_dev > 0:
                reasons.append("✅ Price above SMA50 (resistance level)")

        return "\n".join(reasons) or "Waiting for better entry conditions"

    @staticmethod
    def _exit_strategy(action: Action, sl: float, tp: float, price: float) -> str:
        risk = abs(price - sl)
        reward = abs(tp - price)
        rr = reward / risk if risk else 0.0
        scale_out = "sell" if action == BUY else "cover"
        trail = "+1%" if action == BUY else "-1%"
        return (
            f"📊 Risk: ${risk:.2f} ({risk / price * 100:.2f}%)\n"
            f"📊 Reward: ${reward:.2f} ({reward / price * 100:.2f}%)\n"
            f"📊 Risk/Reward: 1:{rr:.2f}\n"
            "\n💡 Exit Strategy:\n"
            f"• Take Profit: ${tp:.2f} ({scale_out} 50% at TP1, 50% at TP2)\n"
            f"• Stop Loss: ${sl:.2f} (strict, no exceptions)\n"
            f"• Trailing Stop: Consider trailing stop after {trail} gain"
        )

    async def generate_signals_for_timeframes(
        self,
        fetch_candles: CandleFetcher,
        timeframes: Sequence[TimeframeConfig],
    ) -> List[Signal]:
        """One signal per timeframe, in configured order.

        A failing fetch only costs its own timeframe: it is replaced by a
        NO_SIGNAL record and the batch carries on.
        """
        signals: List[Signal] = []
        for tf in timeframes:
            try:
                fetched = fetch_candles(tf.interval)
                if inspect.isawaitable(fetched):
                    fetched = await fetched
                signals.append(self.generate_signal(fetched, tf.label))
            except Exception as e:
                log.warning("signal_failed tf=%s interval=%s err=%s", tf.label, tf.interval, e)
                signals.append(
                    Signal.no_signal(
                        tf.label,
                        datetime.now(timezone.utc).isoformat(),
                        0.0,
                        reason="Failed to fetch data",
                        pattern_text=f"Error: {str(e) or type(e).__name__}",
                    )
                )
        return signals


def _fmt_level(val: Optional[float]) -> str:
    return f"${val:.2f}" if val else "N/A"


def generate_signal(candles: Sequence[Candle], timeframe_label: str) -> Signal:
    """Evaluate with the default engine settings."""
    return SignalEngine().generate_signal(candles, timeframe_label)
