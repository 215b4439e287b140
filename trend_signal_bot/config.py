from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .models import TimeframeConfig


def _strip_quotes(value: str) -> str:
    # Hosting dashboards sometimes keep the quotes pasted around a secret.
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    env_val = _strip_quotes(env_val.strip())
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Trend Signal Bot"
    log_level: str = "INFO"
    symbol: str = "BTC/USD"


@dataclass
class ProviderConfig:
    api_key: str = ""
    base_url: str = "https://api.twelvedata.com"
    timeout_s: int = 10
    outputsize: int = 200
    max_retries: int = 3
    backoff_s: float = 0.8


@dataclass
class StrategyConfig:
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_period: int = 20
    sr_lookback: int = 20

    # Entry rule
    risk_pct: float = 1.0
    reward_pct: float = 2.5
    near_sma_pct: float = 1.0
    max_entry_deviation_pct: float = 1.5
    min_entry_score: int = 3
    entry_volume_ratio: float = 1.1
    confidence_volume_ratio: float = 1.2


@dataclass
class BacktestConfig:
    lookback_days: int = 30
    start_index: int = 200
    step: int = 10
    tail: int = 10
    lookahead: int = 50
    force_close_offset: int = 20
    max_candles: int = 500


@dataclass
class LineConfig:
    enabled: bool = True
    channel_access_token: str = ""
    channel_secret: str = ""
    user_id: str = ""
    message_delay_s: float = 0.5


@dataclass
class SchedulerConfig:
    interval_s: int = 300  # every 5 minutes
    run_on_start: bool = True


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class AlertsConfig:
    send_summary: bool = False
    enable_logging: bool = True
    dedupe: bool = False
    chart_url: str = "https://www.tradingview.com/chart/?symbol=BTCUSD&interval={interval}"


def _default_timeframes() -> List[TimeframeConfig]:
    return [
        TimeframeConfig(interval="15min", label="15m"),
        TimeframeConfig(interval="1h", label="1H"),
        TimeframeConfig(interval="4h", label="4H"),
    ]


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    line: LineConfig = field(default_factory=LineConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    timeframes: List[TimeframeConfig] = field(default_factory=_default_timeframes)


def _parse_timeframes(raw: Optional[List[Dict[str, str]]]) -> List[TimeframeConfig]:
    if not raw:
        return _default_timeframes()
    out = []
    for item in raw:
        if "interval" not in item or "label" not in item:
            raise ValueError(f"timeframe entry needs interval and label: {item!r}")
        out.append(TimeframeConfig(interval=str(item["interval"]), label=str(item["label"])))
    return out


def load_config(path: Optional[str] = None) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        strategy=StrategyConfig(**raw.get("strategy", {})),
        backtest=BacktestConfig(**raw.get("backtest", {})),
        line=LineConfig(**raw.get("line", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
        server=ServerConfig(**raw.get("server", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
        timeframes=_parse_timeframes(raw.get("timeframes")),
    )

    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.api_key = _env_override(cfg.provider.api_key, "TWELVE_DATA_API_KEY")
    cfg.line.channel_access_token = _env_override(cfg.line.channel_access_token, "LINE_CHANNEL_ACCESS_TOKEN")
    cfg.line.channel_secret = _env_override(cfg.line.channel_secret, "LINE_CHANNEL_SECRET")
    cfg.line.user_id = _env_override(cfg.line.user_id, "LINE_USER_ID")
    cfg.scheduler.interval_s = _env_override(cfg.scheduler.interval_s, "SCHEDULE_INTERVAL_S")
    cfg.alerts.send_summary = _env_override(cfg.alerts.send_summary, "SEND_SUMMARY")
    cfg.alerts.enable_logging = _env_override(cfg.alerts.enable_logging, "ENABLE_LOGGING")

    # PORT wins over WEBHOOK_PORT (hosting platforms inject PORT)
    cfg.server.port = _env_override(cfg.server.port, "WEBHOOK_PORT")
    cfg.server.port = _env_override(cfg.server.port, "PORT")

    return cfg


def validate_config(cfg: Config, *, require_line: bool = True) -> None:
    missing = []
    if not cfg.provider.api_key:
        missing.append("TWELVE_DATA_API_KEY")
    if require_line and cfg.line.enabled:
        if not cfg.line.channel_access_token:
            missing.append("LINE_CHANNEL_ACCESS_TOKEN")
        if not cfg.line.user_id:
            missing.append("LINE_USER_ID")
    if not cfg.timeframes:
        missing.append("timeframes")
    if missing:
        raise ValueError("Missing required configuration: " + ", ".join(missing))
