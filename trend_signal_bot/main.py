from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import load_config, validate_config
from .notifier.line import LineNotifier
from .runner import SignalRunner
from .webhook_server import start_server


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def _serve(runner: SignalRunner) -> None:
    cfg = runner.cfg
    app_runner = await start_server(runner, cfg.line.channel_secret, cfg.server.host, cfg.server.port)
    try:
        await runner.run_forever()
    finally:
        await app_runner.cleanup()


async def _backtest(runner: SignalRunner, lookback_days: int) -> None:
    for _label, _result, text in await runner.run_backtests(lookback_days):
        print(text)
        print()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Trend Signal Bot - SMA trend signals pushed to LINE")
    p.add_argument("--config", default=None, help="Path to YAML config (env + defaults when omitted)")
    sub = p.add_subparsers(dest="mode")
    sub.add_parser("run", help="Scheduled signal job (default)")
    sub.add_parser("once", help="Run the signal job once and exit")
    bt = sub.add_parser("backtest", help="Backtest every configured timeframe")
    bt.add_argument("--lookback-days", type=int, default=None)
    bt.add_argument("--no-notify", action="store_true", help="Print results only, do not push to LINE")
    sub.add_parser("serve", help="LINE webhook server plus the scheduled job")
    args = p.parse_args(argv)
    mode = args.mode or "run"
    no_notify = bool(getattr(args, "no_notify", False))

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)
    log = logging.getLogger("main")

    try:
        validate_config(cfg, require_line=not no_notify)
    except ValueError as e:
        log.error("config_invalid err=%s", e)
        return 1

    runner = SignalRunner(cfg, notifier=LineNotifier("", "") if no_notify else None)

    async def _run() -> None:
        try:
            if mode == "once":
                await runner.run_job()
            elif mode == "backtest":
                await _backtest(runner, args.lookback_days or cfg.backtest.lookback_days)
            elif mode == "serve":
                await _serve(runner)
            else:
                await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            try:
                await runner.close()
            except Exception as e:
                log.warning("provider_close_failed err=%s", e)

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        log.exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
