from __future__ import annotations

import asyncio
import aiohttp
from typing import Any, Dict, List, Optional, Sequence
import logging

from ..formatters import DEFAULT_CHART_URL, format_signal, format_summary
from ..models import Signal, TimeframeConfig

log = logging.getLogger("line")

PUSH_URL = "https://api.line.me/v2/bot/message/push"
MAX_TEXT_LEN = 5000


def _truncate(text: str) -> str:
    if len(text) <= MAX_TEXT_LEN:
        return text
    return text[: MAX_TEXT_LEN - 3] + "..."


def timeframe_quick_reply(timeframes: Sequence[TimeframeConfig]) -> Dict[str, Any]:
    """Quick-reply buttons that send back a ``tf-<label>`` command."""
    items = []
    for tf in timeframes:
        items.append({
            "type": "action",
            "action": {"type": "message", "label": f"TF {tf.label}", "text": f"tf-{tf.label.lower()}"},
        })
    items.append({"type": "action", "action": {"type": "message", "label": "Help", "text": "help"}})
    return {"items": items}


class LineNotifier:
    def __init__(self, token: str, user_id: str, *, message_delay_s: float = 0.5, timeout_s: int = 15):
        self.token = (token or "").strip()
        self.user_id = (user_id or "").strip()
        self.message_delay_s = message_delay_s
        self.timeout_s = timeout_s

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.user_id)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    @staticmethod
    def _message(text: str, quick_reply: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"type": "text", "text": _truncate(text)}
        if quick_reply:
            msg["quickReply"] = quick_reply
        return msg

    async def _post(self, url: str, payload: Dict[str, Any], what: str) -> None:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            async with sess.post(url, json=payload, headers=self._headers()) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    log.warning("line_send_failed kind=%s status=%s body=%s", what, resp.status, body[:2000])
                    raise RuntimeError(f"LINE {what} failed: {resp.status} {body[:500]}")

    async def send_text(self, text: str, *, to: Optional[str] = None, quick_reply: Optional[Dict[str, Any]] = None) -> bool:
        """Push one text message; False when the notifier is disabled."""
        if not self.enabled():
            return False
        payload = {"to": to or self.user_id, "messages": [self._message(text, quick_reply)]}
        await self._post(PUSH_URL, payload, "push")
        return True

    async def send_signal(
        self,
        signal: Signal,
        *,
        to: Optional[str] = None,
        symbol: str = "BTC/USD",
        chart_url: str = DEFAULT_CHART_URL,
    ) -> bool:
        try:
            sent = await self.send_text(format_signal(signal, symbol=symbol, chart_url=chart_url), to=to)
        except Exception as e:
            log.exception("line_signal_failed tf=%s err=%s", signal.timeframe_label, e)
            raise
        if sent:
            log.info("line_signal_sent tf=%s action=%s", signal.timeframe_label, signal.action)
        return sent

    async def send_signals(
        self,
        signals: Sequence[Signal],
        *,
        to: Optional[str] = None,
        symbol: str = "BTC/USD",
        chart_url: str = DEFAULT_CHART_URL,
    ) -> List[Signal]:
        """Push each signal in order; returns the ones that went out."""
        sent: List[Signal] = []
        for i, sig in enumerate(signals):
            if i and self.message_delay_s > 0:
                await asyncio.sleep(self.message_delay_s)
            try:
                if await self.send_signal(sig, to=to, symbol=symbol, chart_url=chart_url):
                    sent.append(sig)
            except Exception:
                continue  # already logged
        return sent

    async def send_summary(self, signals: Sequence[Signal], *, to: Optional[str] = None, symbol: str = "BTC/USD") -> None:
        await self.send_text(format_summary(signals, symbol), to=to)
