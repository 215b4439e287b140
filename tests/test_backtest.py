import asyncio
import math

import pytest

from trend_signal_bot.backtest import BacktestSimulator, run_backtest_on, sharpe_ratio
from trend_signal_bot.models import BUY, Candle, CandleSeries, SELL, Signal, UPTREND, DOWNTREND, WAIT


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1000.0) -> Candle:
    return Candle(
        datetime=f"2024-01-{1 + idx // 24:02d} {idx % 24:02d}:00:00",
        open=o,
        high=h,
        low=l,
        close=c,
        volume=v,
    )


def _zigzag(n: int) -> CandleSeries:
    out = []
    prev = 100.0
    for k in range(n):
        close = 100 + 0.02 * k + (0.24 if k % 2 else -0.24)
        out.append(_c(k, prev, max(prev, close) + 0.05, min(prev, close) - 0.05, close))
        prev = close
    return CandleSeries.from_chronological(out)


def _sig(action, price=100.0, sl=99.0, tp=102.5) -> Signal:
    return Signal(
        timeframe_label="1H",
        time="2024-01-01 00:00:00",
        price=price,
        trend=UPTREND if action == BUY else DOWNTREND,
        action=action,
        sl=sl,
        tp=tp,
        pattern_text="",
        sma50=None,
        sma200=None,
    )


def _bars(n: int, *, close: float = 100.4, low: float = 99.5, high: float = 101.0):
    # newest-first list; index 0 is the entry bar
    return [_c(i, 100.0, high, low, close) for i in range(n)]


def test_result_counts_are_consistent():
    res = run_backtest_on(_zigzag(500), "1H")

    # evaluation points 200, 210, ..., 480
    assert res.total_signals == 29
    assert res.buy_signals + res.sell_signals + res.wait_signals == res.total_signals
    assert res.winning_trades + res.losing_trades == res.total_trades
    assert len(res.closed_trades()) == res.total_trades
    if res.total_trades:
        assert res.win_rate == pytest.approx(res.winning_trades / res.total_trades * 100.0)
        assert res.average_profit == pytest.approx(res.total_profit / res.total_trades)
    else:
        assert res.win_rate == 0.0


def test_wait_rows_carry_no_profit():
    res = run_backtest_on(_zigzag(500), "1H")
    waits = [t for t in res.signals if t.action == WAIT]
    # only the first evaluation points see 200 bars of history
    assert waits
    for t in waits:
        assert t.profit is None
        assert t.result is None
        assert t.exit_price is None


def test_drawdown_matches_running_peak():
    res = run_backtest_on(_zigzag(500), "1H")
    assert res.max_drawdown >= 0.0

    peak = 0.0
    total = 0.0
    worst = 0.0
    for t in res.closed_trades():
        total += t.profit
        peak = max(peak, total)
        worst = max(worst, peak - total)
    assert res.max_drawdown == pytest.approx(worst)
    assert res.total_profit == pytest.approx(total)
    assert list(res.equity_curve) == pytest.approx([sum(t.profit for t in res.closed_trades()[: i + 1]) for i in range(res.total_trades)])


def _wave(n: int, phase: float) -> CandleSeries:
    out = []
    prev = 100.0
    for k in range(n):
        close = 100 + 0.03 * k + 2.0 * math.sin(k / 15.0 + phase) + (0.2 if k % 2 else -0.2)
        out.append(_c(k, prev, max(prev, close) + 0.05, min(prev, close) - 0.05, close))
        prev = close
    return CandleSeries.from_chronological(out)


@pytest.mark.parametrize("candles", [_zigzag(500), _wave(500, 0.0), _wave(500, 1.5)])
def test_drawdown_at_every_step(candles):
    res = run_backtest_on(candles, "1H")
    assert len(res.drawdowns) == len(res.equity_curve) == res.total_trades

    peak = 0.0
    for total, dd in zip(res.equity_curve, res.drawdowns):
        peak = max(peak, total)
        assert dd >= 0.0
        assert dd == pytest.approx(max(0.0, peak - total))
    assert res.max_drawdown == pytest.approx(max(res.drawdowns, default=0.0))


def test_backtest_is_idempotent():
    candles = _zigzag(500)
    assert run_backtest_on(candles, "1H") == run_backtest_on(candles, "1H")


def test_short_history_yields_no_rows():
    res = run_backtest_on(_zigzag(205), "1H")
    assert res.total_signals == 0
    assert res.total_trades == 0
    assert res.max_drawdown == 0.0
    assert res.sharpe_ratio == 0.0


def test_stop_checked_before_target_in_same_bar():
    bars = _bars(30)
    bars[1] = _c(1, 100.0, 103.0, 98.5, 100.0)
    out = BacktestSimulator().simulate_trade(_sig(BUY), bars, 0)
    assert out.result == "LOSS"
    assert out.exit_price == pytest.approx(99.0)
    assert out.profit == pytest.approx(-1.0)
    assert out.profit_percent == pytest.approx(-1.0)


def test_target_hit():
    bars = _bars(30)
    bars[3] = _c(3, 100.0, 103.0, 99.5, 102.0)
    out = BacktestSimulator().simulate_trade(_sig(BUY), bars, 0)
    assert out.result == "WIN"
    assert out.exit_price == pytest.approx(102.5)
    assert out.profit == pytest.approx(2.5)


def test_forced_close_after_offset():
    bars = _bars(30)
    bars[20] = _c(20, 100.0, 101.0, 99.5, 100.7)
    out = BacktestSimulator().simulate_trade(_sig(BUY), bars, 0)
    assert out.exit_price == pytest.approx(100.7)
    assert out.result == "WIN"
    assert out.profit == pytest.approx(0.7)


def test_forced_close_clamped_to_last_bar():
    bars = _bars(10, close=99.8)
    out = BacktestSimulator().simulate_trade(_sig(BUY), bars, 0)
    assert out.exit_price == pytest.approx(99.8)
    assert out.result == "LOSS"


def test_sell_mirror():
    bars = _bars(30, high=100.8)
    bars[2] = _c(2, 100.0, 101.2, 99.5, 100.0)
    out = BacktestSimulator().simulate_trade(_sig(SELL, sl=101.0, tp=97.5), bars, 0)
    assert out.result == "LOSS"
    assert out.profit == pytest.approx(-1.0)

    bars = _bars(30, high=100.8)
    bars[2] = _c(2, 100.0, 100.5, 97.0, 98.0)
    out = BacktestSimulator().simulate_trade(_sig(SELL, sl=101.0, tp=97.5), bars, 0)
    assert out.result == "WIN"
    assert out.profit == pytest.approx(2.5)


def test_wait_signal_is_not_simulated():
    sig = Signal.no_signal("1H", "t", 100.0, reason="r", pattern_text="p")
    assert BacktestSimulator().simulate_trade(sig, _bars(30), 0) is None


def test_sharpe_ratio():
    assert sharpe_ratio([]) == 0.0
    assert sharpe_ratio([1.0, 1.0]) == 0.0
    assert sharpe_ratio([2.0, 4.0]) == pytest.approx(3.0)
    assert sharpe_ratio([1.0, -1.0]) == pytest.approx(0.0)


def test_run_backtest_caps_outputsize():
    calls = []
    series = _zigzag(300)

    async def fetch(interval, outputsize):
        calls.append((interval, outputsize))
        return series

    sim = BacktestSimulator(fetch_candles=fetch)
    res = asyncio.run(sim.run_backtest("1h", "1H", lookback_days=30))
    asyncio.run(sim.run_backtest("1h", "1H", lookback_days=10))

    assert calls == [("1h", 500), ("1h", 240)]
    assert res.total_signals == len(range(200, 290, 10))
