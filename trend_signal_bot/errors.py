from __future__ import annotations


class InvalidInput(ValueError):
    """Caller handed the core an empty or malformed candle sequence."""


class UpstreamFetchFailure(RuntimeError):
    """The market-data source could not deliver candles."""
