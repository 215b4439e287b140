from __future__ import annotations
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Literal, Optional, Tuple, Union, overload

from .errors import InvalidInput

Trend = Literal["UPTREND", "DOWNTREND", "SIDEWAY"]
Action = Literal["BUY", "SELL", "WAIT"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]
TradeResult = Literal["WIN", "LOSS", "OPEN"]

UPTREND: Trend = "UPTREND"
DOWNTREND: Trend = "DOWNTREND"
SIDEWAY: Trend = "SIDEWAY"

BUY: Action = "BUY"
SELL: Action = "SELL"
WAIT: Action = "WAIT"

NO_SIGNAL = "NO_SIGNAL"


@dataclass(frozen=True)
class Candle:
    datetime: str
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


class CandleSeries(Sequence):
    """Immutable candle sequence ordered most-recent-first.

    Index 0 is the latest bar, so ``window(n)`` is "the last n bars" and
    ``since(i)`` is the history as it looked i bars ago. Data arriving
    oldest-first must go through ``from_chronological``.
    """

    def __init__(self, candles: Iterable[Candle] = ()):
        self._candles: Tuple[Candle, ...] = tuple(candles)

    @classmethod
    def from_chronological(cls, candles: Iterable[Candle]) -> "CandleSeries":
        return cls(reversed(list(candles)))

    @overload
    def __getitem__(self, idx: int) -> Candle: ...

    @overload
    def __getitem__(self, idx: slice) -> "CandleSeries": ...

    def __getitem__(self, idx: Union[int, slice]):
        if isinstance(idx, slice):
            return CandleSeries(self._candles[idx])
        return self._candles[idx]

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CandleSeries):
            return self._candles == other._candles
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._candles)

    def __repr__(self) -> str:
        if not self._candles:
            return "CandleSeries([])"
        return f"CandleSeries(n={len(self._candles)}, latest={self._candles[0].datetime!r})"

    @property
    def latest(self) -> Candle:
        if not self._candles:
            raise InvalidInput("candle series is empty")
        return self._candles[0]

    def window(self, n: int) -> "CandleSeries":
        return CandleSeries(self._candles[: max(0, n)])

    def since(self, i: int) -> "CandleSeries":
        return CandleSeries(self._candles[max(0, i):])

    def closes(self, n: Optional[int] = None) -> List[float]:
        src = self._candles if n is None else self._candles[:n]
        return [c.close for c in src]

    def chronological(self) -> List[Candle]:
        return list(reversed(self._candles))


def as_series(candles: Iterable[Candle]) -> CandleSeries:
    """Wrap newest-first candles; a CandleSeries is returned as-is."""
    if isinstance(candles, CandleSeries):
        return candles
    return CandleSeries(candles)


@dataclass(frozen=True)
class TimeframeConfig:
    interval: str  # provider interval, e.g. "1h"
    label: str  # display tag, e.g. "1H"


@dataclass(frozen=True)
class MacdResult:
    macd: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None


@dataclass(frozen=True)
class SupportResistance:
    support: Optional[float] = None
    resistance: Optional[float] = None


@dataclass(frozen=True)
class Signal:
    timeframe_label: str
    time: str
    price: float
    trend: Trend
    action: Action
    sl: Optional[float]
    tp: Optional[float]
    pattern_text: str
    sma50: Optional[float]
    sma200: Optional[float]
    rsi: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    volume: Optional[float] = None
    volume_ma: Optional[float] = None
    support_level: Optional[float] = None
    resistance_level: Optional[float] = None
    confidence: int = 0  # 0..100, only scored for BUY/SELL
    risk_level: Optional[RiskLevel] = None
    entry_reason: Optional[str] = None
    exit_strategy: Optional[str] = None
    status: Optional[str] = None  # NO_SIGNAL or None
    reason: Optional[str] = None

    @classmethod
    def no_signal(
        cls,
        timeframe_label: str,
        time: str,
        price: float,
        reason: str,
        pattern_text: str,
        *,
        sma50: Optional[float] = None,
        sma200: Optional[float] = None,
    ) -> "Signal":
        return cls(
            timeframe_label=timeframe_label,
            time=time,
            price=price,
            trend=SIDEWAY,
            action=WAIT,
            sl=None,
            tp=None,
            pattern_text=pattern_text,
            sma50=sma50,
            sma200=sma200,
            status=NO_SIGNAL,
            reason=reason,
        )

    @property
    def is_no_signal(self) -> bool:
        return self.status == NO_SIGNAL

    @property
    def is_actionable(self) -> bool:
        return self.action != WAIT and self.sl is not None and self.tp is not None

    @property
    def volume_ratio(self) -> Optional[float]:
        if not self.volume or not self.volume_ma:
            return None
        return self.volume / self.volume_ma

    @property
    def risk_reward(self) -> Optional[float]:
        if self.sl is None or self.tp is None:
            return None
        risk = abs(self.price - self.sl)
        if risk == 0:
            return None
        return abs(self.tp - self.price) / risk


@dataclass(frozen=True)
class TradeOutcome:
    exit_price: float
    result: TradeResult
    profit: float
    profit_percent: float


@dataclass(frozen=True)
class BacktestTrade:
    date: str
    action: Action
    entry_price: float
    exit_price: Optional[float] = None
    sl: Optional[float] = None
    tp: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    result: Optional[TradeResult] = None  # None for WAIT rows


@dataclass(frozen=True)
class BacktestResult:
    total_signals: int
    buy_signals: int
    sell_signals: int
    wait_signals: int
    win_rate: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    total_profit: float
    average_profit: float
    max_drawdown: float
    sharpe_ratio: float
    signals: Tuple[BacktestTrade, ...] = ()
    equity_curve: Tuple[float, ...] = ()  # running total after each closed trade
    drawdowns: Tuple[float, ...] = ()  # peak - total at each step of the curve

    def closed_trades(self) -> List[BacktestTrade]:
        return [t for t in self.signals if t.result in ("WIN", "LOSS")]
