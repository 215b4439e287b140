from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Set, Tuple

from .backtest import BacktestSimulator
from .config import Config
from .formatters import format_backtest_result, format_help
from .models import BacktestResult, CandleSeries, Signal
from .notifier.line import LineNotifier, timeframe_quick_reply
from .providers.twelvedata import TwelveDataProvider
from .strategy import SignalEngine

log = logging.getLogger("runner")


class SignalRunner:
    """Wires provider, engine and LINE together for scheduled and chat-driven runs."""

    def __init__(
        self,
        cfg: Config,
        provider: Optional[TwelveDataProvider] = None,
        notifier: Optional[LineNotifier] = None,
    ):
        self.cfg = cfg
        self.provider = provider or TwelveDataProvider.from_config(cfg.provider, cfg.app.symbol)
        if notifier is None:
            if cfg.line.enabled:
                notifier = LineNotifier(
                    cfg.line.channel_access_token,
                    cfg.line.user_id,
                    message_delay_s=cfg.line.message_delay_s,
                )
            else:
                notifier = LineNotifier("", "")
        self.line = notifier

        self.engine = SignalEngine.from_config(cfg.strategy)
        self.simulator = BacktestSimulator.from_config(self.engine, cfg.backtest, self.provider.fetch_candles)
        self._dedupe: Set[str] = set()

    @property
    def symbol(self) -> str:
        return self.cfg.app.symbol

    async def _fetch(self, interval: str) -> CandleSeries:
        return await self.provider.fetch_candles(interval, self.cfg.provider.outputsize)

    @staticmethod
    def _dedupe_key(sig: Signal) -> str:
        return f"{sig.timeframe_label}:{sig.time}:{sig.action}"

    def _filter_seen(self, signals: List[Signal]) -> List[Signal]:
        if not self.cfg.alerts.dedupe:
            return signals
        out = []
        for sig in signals:
            if sig.is_actionable:
                key = self._dedupe_key(sig)
                if key in self._dedupe:
                    log.info("signal_deduped key=%s", key)
                    continue
                self._dedupe.add(key)
            out.append(sig)
        return out

    async def _send_signals(self, signals: List[Signal], to: Optional[str] = None) -> None:
        await self.line.send_signals(
            signals,
            to=to,
            symbol=self.symbol,
            chart_url=self.cfg.alerts.chart_url,
        )

    async def run_job(self) -> List[Signal]:
        started = time.monotonic()
        log.info("job_start timeframes=%s", ",".join(tf.label for tf in self.cfg.timeframes))
        try:
            signals = await self.engine.generate_signals_for_timeframes(self._fetch, self.cfg.timeframes)

            if self.cfg.alerts.enable_logging:
                for sig in signals:
                    log.info(
                        "signal tf=%s action=%s trend=%s price=%.2f confidence=%d status=%s",
                        sig.timeframe_label,
                        sig.action,
                        sig.trend,
                        sig.price,
                        sig.confidence,
                        sig.status or "OK",
                    )

            await self._send_signals(self._filter_seen(signals))
            if self.cfg.alerts.send_summary:
                await self.line.send_summary(signals, symbol=self.symbol)

            log.info("job_done duration=%.2fs signals=%d", time.monotonic() - started, len(signals))
            return signals
        except Exception as e:
            log.exception("job_failed err=%s", e)
            err_sig = Signal.no_signal(
                "ERROR",
                datetime.now(timezone.utc).isoformat(),
                0.0,
                reason="Job execution failed",
                pattern_text=f"Error occurred: {str(e) or type(e).__name__}",
            )
            try:
                await self.line.send_signal(err_sig, symbol=self.symbol)
            except Exception as line_err:
                log.warning("job_error_notify_failed err=%s", line_err)
            return [err_sig]

    async def run_backtests(self, lookback_days: Optional[int] = None, *, to: Optional[str] = None) -> List[Tuple[str, BacktestResult, str]]:
        """Backtest every configured timeframe; a failing one is logged and skipped."""
        days = int(lookback_days or self.cfg.backtest.lookback_days)
        out: List[Tuple[str, BacktestResult, str]] = []
        for tf in self.cfg.timeframes:
            try:
                result = await self.simulator.run_backtest(tf.interval, tf.label, days)
            except Exception as e:
                log.warning("backtest_failed tf=%s interval=%s err=%s", tf.label, tf.interval, e)
                continue
            text = format_backtest_result(result, tf.label, days)
            out.append((tf.label, result, text))
            try:
                await self.line.send_text(text, to=to)
            except Exception as e:
                log.warning("backtest_send_failed tf=%s err=%s", tf.label, e)
        return out

    async def run_forever(self) -> None:
        interval_s = max(1, int(self.cfg.scheduler.interval_s))
        log.info(
            "scheduler_start interval_s=%d timeframes=%s symbol=%s",
            interval_s,
            ",".join(tf.label for tf in self.cfg.timeframes),
            self.symbol,
        )
        if self.cfg.scheduler.run_on_start:
            await self.run_job()

        while True:
            # wake on the next wall-clock multiple of the interval
            now = time.time()
            next_run = (int(now // interval_s) + 1) * interval_s
            await asyncio.sleep(next_run - now)
            await self.run_job()

    # Chat commands (webhook)

    async def send_timeframe_signal(self, to: str, interval: str, label: str) -> None:
        try:
            await self.line.send_text(f"⏳ Analysing {self.symbol} ({label})...\nPlease wait...", to=to)
            candles = await self._fetch(interval)
            sig = self.engine.generate_signal(candles, label)
            await self.line.send_signal(sig, to=to, symbol=self.symbol, chart_url=self.cfg.alerts.chart_url)
        except Exception as e:
            log.warning("timeframe_signal_failed tf=%s err=%s", label, e)
            await self.line.send_text(f"❌ Could not fetch the {label} signal.\nPlease try again.", to=to)

    async def send_signal_response(self, to: str) -> None:
        await self.line.send_text(f"⏳ Analysing {self.symbol}...\nPlease wait...", to=to)
        signals = await self.engine.generate_signals_for_timeframes(self._fetch, self.cfg.timeframes)
        await self._send_signals(signals, to=to)

    async def send_help(self, to: str) -> None:
        await self.line.send_text(format_help(), to=to, quick_reply=timeframe_quick_reply(self.cfg.timeframes))

    async def send_backtest(self, to: str) -> None:
        await self.line.send_text("⏳ Running backtest...\nPlease wait...", to=to)
        results = await self.run_backtests(to=to)
        if not results:
            await self.line.send_text("❌ Backtest failed for every timeframe.\nPlease try again later.", to=to)

    async def close(self) -> None:
        await self.provider.close()
