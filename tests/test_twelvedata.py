import asyncio

import pytest

from trend_signal_bot.errors import InvalidInput, UpstreamFetchFailure
from trend_signal_bot.providers.twelvedata import TwelveDataProvider, parse_time_series

PAYLOAD = {
    "meta": {"symbol": "BTC/USD", "interval": "1h"},
    "values": [
        {"datetime": "2024-01-01 02:00:00", "open": "101", "high": "103", "low": "100.5", "close": "102.5", "volume": "12"},
        {"datetime": "2024-01-01 01:00:00", "open": "100", "high": "101.5", "low": "99", "close": "101"},
    ],
    "status": "ok",
}


class _Resp:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text
        self.headers = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        return self._payload


class _Session:
    closed = False

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None):
        self.calls.append((url, dict(params or {})))
        return self.responses.pop(0)


def _provider(responses, **kw):
    p = TwelveDataProvider("key", "BTC/USD", backoff_s=0.0, **kw)
    p._session = _Session(responses)
    return p


def test_parse_keeps_latest_first():
    s = parse_time_series(PAYLOAD)
    assert len(s) == 2
    assert s.latest.datetime == "2024-01-01 02:00:00"
    assert s.latest.close == 102.5
    assert s.latest.volume == 12.0
    assert s[1].volume is None


def test_parse_errors():
    with pytest.raises(UpstreamFetchFailure, match="Invalid API key"):
        parse_time_series({"status": "error", "code": 401, "message": "Invalid API key"})
    with pytest.raises(UpstreamFetchFailure, match="No data returned from API"):
        parse_time_series({"status": "ok", "values": []})
    with pytest.raises(InvalidInput):
        parse_time_series({"values": [{"datetime": "x", "open": "1"}]})


def test_fetch_builds_query():
    p = _provider([_Resp(200, PAYLOAD)])
    s = asyncio.run(p.fetch_candles("1h", 250))
    assert s.latest.close == 102.5

    url, params = p._session.calls[0]
    assert url == "https://api.twelvedata.com/time_series"
    assert params["symbol"] == "BTC/USD"
    assert params["interval"] == "1h"
    assert params["outputsize"] == 250
    assert params["apikey"] == "key"


def test_rate_limit_then_success():
    p = _provider([_Resp(429, text="slow down"), _Resp(200, PAYLOAD)])
    s = asyncio.run(p.fetch_candles("15min"))
    assert len(s) == 2
    assert len(p._session.calls) == 2


def test_rate_limit_exhausts_retries():
    p = _provider([_Resp(429, text="slow down")] * 3, max_retries=3)
    with pytest.raises(UpstreamFetchFailure, match="rate limited"):
        asyncio.run(p.fetch_candles("15min"))


def test_http_error_is_not_retried():
    p = _provider([_Resp(500, text="oops"), _Resp(200, PAYLOAD)])
    with pytest.raises(UpstreamFetchFailure, match="500"):
        asyncio.run(p.fetch_candles("4h"))
    assert len(p._session.calls) == 1


def test_current_price_uses_latest_close():
    p = _provider([_Resp(200, PAYLOAD)])
    assert asyncio.run(p.get_current_price()) == 102.5
    assert p._session.calls[0][1]["interval"] == "1min"
    assert p._session.calls[0][1]["outputsize"] == 1
