from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Dict

from aiohttp import web

from .commands import route_text

log = logging.getLogger("webhook")

RUNNER_KEY = web.AppKey("runner", object)
SECRET_KEY = web.AppKey("channel_secret", str)


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """LINE signs the raw request body: base64(HMAC-SHA256(secret, body))."""
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)


async def _handle_text_event(runner, event: Dict[str, Any]) -> None:
    text = (event.get("message") or {}).get("text", "").strip()
    to = (event.get("source") or {}).get("userId") or runner.cfg.line.user_id
    cmd = route_text(text, runner.cfg.timeframes)
    log.info("chat_command kind=%s interval=%s user=%s text=%r", cmd.kind, cmd.interval, (to or "")[:10], text[:50])

    if cmd.kind == "TIMEFRAME":
        await runner.send_timeframe_signal(to, cmd.interval, cmd.label)
    elif cmd.kind == "SIGNAL":
        await runner.send_signal_response(to)
    elif cmd.kind == "BACKTEST":
        await runner.send_backtest(to)
    else:
        await runner.send_help(to)


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def webhook(request: web.Request) -> web.Response:
    body = await request.read()
    if not verify_signature(body, request.app[SECRET_KEY], request.headers.get("X-Line-Signature", "")):
        log.warning("webhook_bad_signature len=%d", len(body))
        return web.Response(status=401, text="Invalid signature")

    runner = request.app[RUNNER_KEY]
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
        for event in payload.get("events") or []:
            if event.get("type") == "message" and (event.get("message") or {}).get("type") == "text":
                await _handle_text_event(runner, event)
    except Exception as e:
        log.exception("webhook_error err=%s", e)
        return web.Response(status=500, text="Error")
    return web.Response(status=200, text="OK")


def create_app(runner, channel_secret: str) -> web.Application:
    app = web.Application()
    app[RUNNER_KEY] = runner
    app[SECRET_KEY] = channel_secret or ""
    app.router.add_get("/health", health)
    app.router.add_post("/webhook", webhook)
    return app


async def start_server(runner, channel_secret: str, host: str, port: int) -> web.AppRunner:
    """Start listening; the caller owns ``cleanup()`` of the returned AppRunner."""
    app_runner = web.AppRunner(create_app(runner, channel_secret))
    await app_runner.setup()
    site = web.TCPSite(app_runner, host, port)
    await site.start()
    log.info("webhook_server_started host=%s port=%d", host, port)
    return app_runner
