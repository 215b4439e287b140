from __future__ import annotations

import inspect
import logging
import math
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from .models import (
    BUY,
    BacktestResult,
    BacktestTrade,
    Candle,
    CandleSeries,
    SELL,
    Signal,
    TradeOutcome,
    WAIT,
    as_series,
)
from .strategy import SignalEngine

log = logging.getLogger("backtest")

HistoryFetcher = Callable[[str, int], Union[Sequence[Candle], Awaitable[Sequence[Candle]]]]


class BacktestSimulator:
    """Replays the signal engine over history and simulates SL/TP exits.

    Evaluation points start ``start_index`` bars into the newest-first array
    and advance ``step`` bars at a time; each one sees ``candles.since(i)``.
    A trade scans up to ``lookahead`` bars past its index for the first SL
    or TP touch and is force-closed at ``force_close_offset`` otherwise.
    """

    def __init__(
        self,
        engine: Optional[SignalEngine] = None,
        fetch_candles: Optional[HistoryFetcher] = None,
        *,
        start_index: Optional[int] = None,
        step: int = 10,
        tail: int = 10,
        lookahead: int = 50,
        force_close_offset: int = 20,
        max_candles: int = 500,
    ):
        self.engine = engine or SignalEngine()
        self.fetch_candles = fetch_candles
        self.start_index = self.engine.min_history if start_index is None else int(start_index)
        self.step = max(1, int(step))
        self.tail = int(tail)
        self.lookahead = int(lookahead)
        self.force_close_offset = int(force_close_offset)
        self.max_candles = int(max_candles)

    @classmethod
    def from_config(cls, engine: SignalEngine, cfg, fetch_candles: Optional[HistoryFetcher] = None) -> "BacktestSimulator":
        return cls(
            engine,
            fetch_candles,
            start_index=cfg.start_index,
            step=cfg.step,
            tail=cfg.tail,
            lookahead=cfg.lookahead,
            force_close_offset=cfg.force_close_offset,
            max_candles=cfg.max_candles,
        )

    async def run_backtest(self, interval: str, timeframe_label: str, lookback_days: int = 30) -> BacktestResult:
        if self.fetch_candles is None:
            raise RuntimeError("BacktestSimulator has no candle fetcher")
        outputsize = min(int(lookback_days) * 24, self.max_candles)
        fetched = self.fetch_candles(interval, outputsize)
        if inspect.isawaitable(fetched):
            fetched = await fetched
        candles = as_series(fetched)
        log.info("backtest_start tf=%s interval=%s candles=%d outputsize=%d", timeframe_label, interval, len(candles), outputsize)
        result = self.simulate(candles, timeframe_label)
        log.info(
            "backtest_done tf=%s signals=%d trades=%d win_rate=%.2f total_profit=%.2f max_dd=%.2f",
            timeframe_label,
            result.total_signals,
            result.total_trades,
            result.win_rate,
            result.total_profit,
            result.max_drawdown,
        )
        return result

    def simulate(self, candles: Sequence[Candle], timeframe_label: str) -> BacktestResult:
        series = as_series(candles)
        n = len(series)

        rows: List[BacktestTrade] = []
        profits: List[float] = []
        equity: List[float] = []
        drawdowns: List[float] = []
        total_profit = 0.0
        peak = 0.0
        max_drawdown = 0.0
        wins = 0
        losses = 0

        for i in range(self.start_index, n - self.tail, self.step):
            sig = self.engine.generate_signal(series.since(i), timeframe_label)

            if not sig.is_actionable:
                rows.append(BacktestTrade(date=sig.time, action=sig.action, entry_price=sig.price))
                continue

            outcome = self.simulate_trade(sig, series, i)
            if outcome is None:
                rows.append(BacktestTrade(
                    date=sig.time,
                    action=sig.action,
                    entry_price=sig.price,
                    sl=sig.sl,
                    tp=sig.tp,
                    result="OPEN",
                ))
                continue

            total_profit += outcome.profit
            peak = max(peak, total_profit)
            max_drawdown = max(max_drawdown, peak - total_profit)
            equity.append(total_profit)
            drawdowns.append(peak - total_profit)
            profits.append(outcome.profit)
            if outcome.result == "WIN":
                wins += 1
            else:
                losses += 1

            rows.append(BacktestTrade(
                date=sig.time,
                action=sig.action,
                entry_price=sig.price,
                exit_price=outcome.exit_price,
                sl=sig.sl,
                tp=sig.tp,
                profit=outcome.profit,
                profit_percent=outcome.profit_percent,
                result=outcome.result,
            ))

        total_trades = wins + losses
        win_rate = (wins / total_trades * 100.0) if total_trades > 0 else 0.0
        average_profit = sum(profits) / len(profits) if profits else 0.0

        return BacktestResult(
            total_signals=len(rows),
            buy_signals=sum(1 for r in rows if r.action == BUY),
            sell_signals=sum(1 for r in rows if r.action == SELL),
            wait_signals=sum(1 for r in rows if r.action == WAIT),
            win_rate=win_rate,
            total_trades=total_trades,
            winning_trades=wins,
            losing_trades=losses,
            total_profit=total_profit,
            average_profit=average_profit,
            max_drawdown=max_drawdown,
            sharpe_ratio=sharpe_ratio(profits),
            signals=tuple(rows),
            equity_curve=tuple(equity),
            drawdowns=tuple(drawdowns),
        )

    def simulate_trade(self, sig: Signal, candles: Sequence[Candle], start_index: int) -> Optional[TradeOutcome]:
        """First SL/TP touch after ``start_index``, else a forced close.

        Bars are checked one at a time and within a bar the stop is tested
        before the target, so a bar spanning both counts as a loss.
        """
        if not sig.is_actionable:
            return None

        entry = sig.price
        sl = float(sig.sl)
        tp = float(sig.tp)
        n = len(candles)

        for j in range(start_index + 1, min(start_index + self.lookahead, n)):
            c = candles[j]
            if sig.action == BUY and c.low <= sl:
                return _outcome(sig.action, entry, sl, "LOSS")
            if sig.action == SELL and c.high >= sl:
                return _outcome(sig.action, entry, sl, "LOSS")
            if sig.action == BUY and c.high >= tp:
                return _outcome(sig.action, entry, tp, "WIN")
            if sig.action == SELL and c.low <= tp:
                return _outcome(sig.action, entry, tp, "WIN")

        exit_price = candles[min(start_index + self.force_close_offset, n - 1)].close
        profit = exit_price - entry if sig.action == BUY else entry - exit_price
        return TradeOutcome(
            exit_price=exit_price,
            result="WIN" if profit > 0 else "LOSS",
            profit=profit,
            profit_percent=profit / entry * 100.0,
        )


def _outcome(action: str, entry: float, exit_price: float, result: str) -> TradeOutcome:
    profit = exit_price - entry if action == BUY else entry - exit_price
    return TradeOutcome(
        exit_price=exit_price,
        result=result,
        profit=profit,
        profit_percent=profit / entry * 100.0,
    )


def sharpe_ratio(profits: Sequence[float]) -> float:
    """Mean over population standard deviation; 0 when undefined."""
    if not profits:
        return 0.0
    mean = sum(profits) / len(profits)
    variance = sum((p - mean) ** 2 for p in profits) / len(profits)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return mean / std


def run_backtest_on(candles: CandleSeries, timeframe_label: str, engine: Optional[SignalEngine] = None) -> BacktestResult:
    """Synchronous replay of an in-memory series with default settings."""
    return BacktestSimulator(engine).simulate(candles, timeframe_label)
