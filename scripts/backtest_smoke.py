from __future__ import annotations

import math
from datetime import datetime, timedelta

from trend_signal_bot.backtest import BacktestSimulator
from trend_signal_bot.formatters import format_backtest_result, format_signal
from trend_signal_bot.models import Candle, CandleSeries
from trend_signal_bot.strategy import SignalEngine


def candle(idx: int, prev_close: float, close: float, vol: float = 1000.0) -> Candle:
    ts = datetime(2024, 1, 1) + timedelta(hours=idx)
    return Candle(
        datetime=ts.strftime("%Y-%m-%d %H:%M:%S"),
        open=prev_close,
        high=max(prev_close, close) + 0.05,
        low=min(prev_close, close) - 0.05,
        close=close,
        volume=vol,
    )


def wave_series(n: int = 500) -> CandleSeries:
    """Slow uptrend with a sine swing so both pullbacks and rallies show up."""
    out = []
    prev = 100.0
    for k in range(n):
        close = 100.0 + 0.03 * k + 2.0 * math.sin(k / 15.0) + (0.2 if k % 2 else -0.2)
        out.append(candle(k, prev, close))
        prev = close
    return CandleSeries.from_chronological(out)


def main():
    candles = wave_series()
    engine = SignalEngine()

    latest = engine.generate_signal(candles, "1H")
    print(format_signal(latest))
    print()

    result = BacktestSimulator(engine).simulate(candles, "1H")
    print(format_backtest_result(result, "1H", lookback_days=len(candles) // 24))
    print()
    print(
        f"rows={result.total_signals} buy={result.buy_signals} sell={result.sell_signals} "
        f"wait={result.wait_signals} trades={result.total_trades} sharpe={result.sharpe_ratio:.3f}"
    )


if __name__ == "__main__":
    main()
