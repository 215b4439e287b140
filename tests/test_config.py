import pytest

from trend_signal_bot.config import Config, load_config, validate_config
from trend_signal_bot.models import TimeframeConfig
from trend_signal_bot.strategy import SignalEngine

ENV_KEYS = (
    "TWELVE_DATA_API_KEY",
    "LINE_CHANNEL_ACCESS_TOKEN",
    "LINE_CHANNEL_SECRET",
    "LINE_USER_ID",
    "PORT",
    "WEBHOOK_PORT",
    "SCHEDULE_INTERVAL_S",
    "SEND_SUMMARY",
    "ENABLE_LOGGING",
    "LOG_LEVEL",
)


def _clean_env(monkeypatch):
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


def test_defaults_without_file(monkeypatch):
    _clean_env(monkeypatch)
    cfg = load_config()
    assert cfg.app.symbol == "BTC/USD"
    assert cfg.server.port == 3000
    assert cfg.scheduler.interval_s == 300
    assert [tf.label for tf in cfg.timeframes] == ["15m", "1H", "4H"]
    assert cfg.timeframes[0] == TimeframeConfig("15min", "15m")


def test_yaml_sections_and_timeframes(tmp_path, monkeypatch):
    _clean_env(monkeypatch)
    p = tmp_path / "config.yaml"
    p.write_text(
        "app:\n"
        "  symbol: ETH/USD\n"
        "strategy:\n"
        "  reward_pct: 3.0\n"
        "  min_entry_score: 4\n"
        "backtest:\n"
        "  lookback_days: 14\n"
        "timeframes:\n"
        "  - {interval: 1h, label: 1H}\n",
        encoding="utf-8",
    )
    cfg = load_config(str(p))
    assert cfg.app.symbol == "ETH/USD"
    assert cfg.strategy.reward_pct == 3.0
    assert cfg.backtest.lookback_days == 14
    assert cfg.timeframes == [TimeframeConfig("1h", "1H")]

    eng = SignalEngine.from_config(cfg.strategy)
    assert eng.reward_pct == 3.0
    assert eng.min_entry_score == 4


def test_bad_timeframe_entry(tmp_path, monkeypatch):
    _clean_env(monkeypatch)
    p = tmp_path / "config.yaml"
    p.write_text("timeframes:\n  - {interval: 1h}\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(p))


def test_env_overrides_strip_quotes(monkeypatch):
    _clean_env(monkeypatch)
    monkeypatch.setenv("TWELVE_DATA_API_KEY", '"abc123"')
    monkeypatch.setenv("LINE_CHANNEL_ACCESS_TOKEN", "'tok'")
    monkeypatch.setenv("LINE_USER_ID", "U123")
    monkeypatch.setenv("SEND_SUMMARY", "true")
    monkeypatch.setenv("SCHEDULE_INTERVAL_S", "60")
    monkeypatch.setenv("WEBHOOK_PORT", "8080")
    monkeypatch.setenv("PORT", "9000")

    cfg = load_config()
    assert cfg.provider.api_key == "abc123"
    assert cfg.line.channel_access_token == "tok"
    assert cfg.line.user_id == "U123"
    assert cfg.alerts.send_summary is True
    assert cfg.scheduler.interval_s == 60
    assert cfg.server.port == 9000


def test_bad_int_env_keeps_default(monkeypatch):
    _clean_env(monkeypatch)
    monkeypatch.setenv("WEBHOOK_PORT", "not-a-port")
    assert load_config().server.port == 3000


def test_validate_lists_missing_keys():
    with pytest.raises(ValueError) as ei:
        validate_config(Config())
    msg = str(ei.value)
    assert "TWELVE_DATA_API_KEY" in msg
    assert "LINE_CHANNEL_ACCESS_TOKEN" in msg
    assert "LINE_USER_ID" in msg


def test_validate_without_line():
    cfg = Config()
    cfg.provider.api_key = "k"
    validate_config(cfg, require_line=False)

    cfg.line.enabled = False
    validate_config(cfg)
