from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..errors import InvalidInput, UpstreamFetchFailure
from ..models import Candle, CandleSeries

log = logging.getLogger("twelvedata")

DEFAULT_BASE_URL = "https://api.twelvedata.com"


def parse_time_series(data: Dict[str, Any]) -> CandleSeries:
    """Turn a /time_series payload into a newest-first CandleSeries.

    Twelve Data already returns ``values`` latest first, so no reordering.
    """
    if not isinstance(data, dict):
        raise UpstreamFetchFailure(f"Unexpected payload type: {type(data).__name__}")
    if data.get("status") == "error":
        raise UpstreamFetchFailure(data.get("message") or "Twelve Data API error")

    values = data.get("values") or []
    if not values:
        raise UpstreamFetchFailure("No data returned from API")

    out: List[Candle] = []
    for row in values:
        try:
            vol = row.get("volume")
            out.append(Candle(
                datetime=str(row["datetime"]),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(vol) if vol not in (None, "") else None,
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"malformed candle row {row!r}: {e}") from e
    return CandleSeries(out)


class TwelveDataProvider:
    def __init__(
        self,
        api_key: str,
        symbol: str = "BTC/USD",
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: int = 10,
        max_retries: int = 3,
        backoff_s: float = 0.8,
    ):
        self.api_key = api_key
        self.symbol = symbol
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_s = timeout_s

        # REST robustness
        self.max_retries = max(1, int(max_retries))
        self.backoff_s = backoff_s

        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, provider_cfg, symbol: str) -> "TwelveDataProvider":
        return cls(
            provider_cfg.api_key,
            symbol,
            base_url=provider_cfg.base_url,
            timeout_s=provider_cfg.timeout_s,
            max_retries=provider_cfg.max_retries,
            backoff_s=provider_cfg.backoff_s,
        )

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.timeout_s,
            connect=min(10, self.timeout_s),
            sock_read=max(5, int(self.timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout())
        return self._session

    async def fetch_candles(self, interval: str, outputsize: int = 200) -> CandleSeries:
        url = f"{self.base_url}/time_series"
        params = {
            "symbol": self.symbol,
            "interval": interval,
            "outputsize": int(outputsize),
            "apikey": self.api_key,
            "format": "json",
        }

        sess = await self._get_session()

        backoff = float(self.backoff_s)
        data: Any = None
        last_err: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status == 429:
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s interval=%s attempt=%d/%d sleep=%.1fs body=%s",
                            resp.status,
                            interval,
                            attempt,
                            self.max_retries,
                            sleep_s,
                            txt[:200],
                        )
                        last_err = UpstreamFetchFailure(f"Twelve Data rate limited: {txt[:200]}")
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise UpstreamFetchFailure(f"API request failed: {resp.status} {txt[:500]}")

                    data = await resp.json(content_type=None)

                last_err = None
                break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= self.max_retries:
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d interval=%s backoff=%.1fs err=%s",
                    attempt,
                    self.max_retries,
                    interval,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is not None:
            if isinstance(last_err, UpstreamFetchFailure):
                raise last_err
            raise UpstreamFetchFailure(f"API request failed: {last_err!r}") from last_err

        candles = parse_time_series(data)
        log.debug("fetched symbol=%s interval=%s candles=%d latest=%s", self.symbol, interval, len(candles), candles.latest.datetime)
        return candles

    async def get_current_price(self) -> float:
        candles = await self.fetch_candles("1min", 1)
        return candles.latest.close
