import asyncio

from trend_signal_bot.config import Config
from trend_signal_bot.errors import UpstreamFetchFailure
from trend_signal_bot.models import Candle, CandleSeries, TimeframeConfig
from trend_signal_bot.runner import SignalRunner


def _c(idx: int, o: float, c: float, v: float = 1000.0) -> Candle:
    return Candle(
        datetime=f"2024-01-{1 + idx // 24:02d} {idx % 24:02d}:00:00",
        open=o,
        high=max(o, c) + 0.05,
        low=min(o, c) - 0.05,
        close=c,
        volume=v,
    )


def _rising(n: int) -> CandleSeries:
    out = []
    prev = 100.0
    for k in range(n):
        close = 100 + 0.02 * k + (0.24 if k % 2 else -0.24)
        out.append(_c(k, prev, close))
        prev = close
    return CandleSeries.from_chronological(out)


class FakeProvider:
    def __init__(self, series, fail_intervals=()):
        self.series = series
        self.fail_intervals = set(fail_intervals)
        self.calls = []
        self.closed = False

    async def fetch_candles(self, interval, outputsize=200):
        self.calls.append((interval, outputsize))
        if interval in self.fail_intervals:
            raise UpstreamFetchFailure(f"no data for {interval}")
        return self.series

    async def close(self):
        self.closed = True


class FakeNotifier:
    def __init__(self, fail_batch: bool = False):
        self.fail_batch = fail_batch
        self.batches = []
        self.single = []
        self.texts = []
        self.summaries = []

    def enabled(self):
        return True

    async def send_signals(self, signals, *, to=None, symbol="BTC/USD", chart_url=""):
        if self.fail_batch:
            raise RuntimeError("LINE push failed: 500")
        self.batches.append((list(signals), to))
        return list(signals)

    async def send_signal(self, signal, *, to=None, symbol="BTC/USD", chart_url=""):
        self.single.append((signal, to))
        return True

    async def send_text(self, text, *, to=None, quick_reply=None):
        self.texts.append((text, to, quick_reply))
        return True

    async def send_summary(self, signals, *, to=None, symbol="BTC/USD"):
        self.summaries.append(list(signals))


def _runner(provider, notifier, **alerts) -> SignalRunner:
    cfg = Config()
    for k, v in alerts.items():
        setattr(cfg.alerts, k, v)
    return SignalRunner(cfg, provider=provider, notifier=notifier)


def test_run_job_pushes_every_timeframe():
    provider = FakeProvider(_rising(250), fail_intervals={"4h"})
    notifier = FakeNotifier()
    runner = _runner(provider, notifier, send_summary=True)

    signals = asyncio.run(runner.run_job())

    assert [s.timeframe_label for s in signals] == ["15m", "1H", "4H"]
    assert signals[0].action == "BUY"
    assert signals[2].is_no_signal
    assert signals[2].reason == "Failed to fetch data"
    assert [c[0] for c in provider.calls] == ["15min", "1h", "4h"]
    assert all(c[1] == runner.cfg.provider.outputsize for c in provider.calls)

    assert len(notifier.batches) == 1
    assert len(notifier.batches[0][0]) == 3
    assert len(notifier.summaries) == 1


def test_run_job_failure_sends_error_notice():
    notifier = FakeNotifier(fail_batch=True)
    runner = _runner(FakeProvider(_rising(250)), notifier)

    out = asyncio.run(runner.run_job())

    assert len(out) == 1
    err = out[0]
    assert err.is_no_signal
    assert err.timeframe_label == "ERROR"
    assert err.reason == "Job execution failed"
    assert "LINE push failed" in err.pattern_text
    assert [s for s, _ in notifier.single] == [err]


def test_dedupe_skips_repeated_actionable_signals():
    notifier = FakeNotifier()
    runner = _runner(FakeProvider(_rising(250)), notifier, dedupe=True)

    asyncio.run(runner.run_job())
    asyncio.run(runner.run_job())

    first, second = notifier.batches[0][0], notifier.batches[1][0]
    assert len(first) == 3
    assert second == []


def test_run_backtests_skips_failing_timeframe():
    provider = FakeProvider(_rising(500), fail_intervals={"1h"})
    notifier = FakeNotifier()
    runner = _runner(provider, notifier)

    out = asyncio.run(runner.run_backtests(10))

    assert [label for label, _, _ in out] == ["15m", "4H"]
    for _, result, text in out:
        assert result.total_signals == 29
        assert "Period: last 10 days" in text
    assert len(notifier.texts) == 2
    assert all(c[1] == 240 for c in provider.calls)


def test_chat_helpers_reply_to_user():
    notifier = FakeNotifier()
    provider = FakeProvider(_rising(250), fail_intervals={"4h"})
    runner = _runner(provider, notifier)
    runner.cfg.timeframes = [TimeframeConfig("1h", "1H")]

    asyncio.run(runner.send_timeframe_signal("U1", "1h", "1H"))
    assert notifier.single[0][0].action == "BUY"
    assert notifier.single[0][1] == "U1"

    asyncio.run(runner.send_timeframe_signal("U1", "4h", "4H"))
    assert "Could not fetch the 4H signal" in notifier.texts[-1][0]

    asyncio.run(runner.send_help("U2"))
    text, to, quick = notifier.texts[-1]
    assert to == "U2"
    assert [i["action"]["text"] for i in quick["items"]] == ["tf-1h", "help"]

    asyncio.run(runner.send_signal_response("U3"))
    assert notifier.batches[-1][1] == "U3"
    assert len(notifier.batches[-1][0]) == 1


def test_close_closes_provider():
    provider = FakeProvider(_rising(10))
    asyncio.run(_runner(provider, FakeNotifier()).close())
    assert provider.closed
