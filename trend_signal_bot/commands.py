from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from .models import TimeframeConfig

CommandKind = Literal["TIMEFRAME", "SIGNAL", "HELP", "BACKTEST"]

# (interval, label, keywords); checked in this order, first hit wins
TIMEFRAME_KEYWORDS: List[Tuple[str, str, Tuple[str, ...]]] = [
    ("15min", "15m", ("ขอแนวทาง tf-15m", "tf-15m", "tf-15", "15m", "15 นาที", "15นาที")),
    ("30min", "30m", ("ขอแนวทาง tf-30m", "tf-30m", "tf-30", "30m", "30 นาที", "30นาที")),
    ("1h", "1H", ("ขอแนวทาง tf-1hr", "tf-1hr", "tf-1h", "tf-1", "1hr", "1h", "1 ชั่วโมง", "1ชั่วโมง")),
    ("4h", "4H", ("ขอแนวทาง tf-4hr", "tf-4hr", "tf-4h", "tf-4", "4hr", "4h", "4 ชั่วโมง", "4ชั่วโมง")),
]

SIGNAL_KEYWORDS = (
    "signal", "สัญญาณ", "สัญญาณใหม่", "signal ใหม่", "ดูสัญญาณ", "check signal",
    "update", "อัพเดท", "อัปเดท", "ราคา", "price", "btc", "bitcoin",
)
HELP_KEYWORDS = ("help", "ช่วย", "คำสั่ง", "command", "menu", "เมนู")
BACKTEST_KEYWORDS = ("backtest", "ทดสอบ", "test", "ทดลอง")


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    interval: Optional[str] = None
    label: Optional[str] = None


def _matches(text: str, keywords: Sequence[str]) -> bool:
    return any(k.lower() in text for k in keywords)


def route_text(text: str, timeframes: Sequence[TimeframeConfig] = ()) -> Command:
    """Map a chat message to a command. Unknown text gets the help menu.

    A timeframe hit reuses the label of a configured timeframe with the same
    interval so replies match the scheduled messages.
    """
    t = (text or "").strip().lower()
    configured: Dict[str, str] = {tf.interval: tf.label for tf in timeframes}

    for interval, label, keywords in TIMEFRAME_KEYWORDS:
        if _matches(t, keywords):
            return Command("TIMEFRAME", interval, configured.get(interval, label))

    if _matches(t, SIGNAL_KEYWORDS):
        return Command("SIGNAL")
    if _matches(t, HELP_KEYWORDS):
        return Command("HELP")
    if _matches(t, BACKTEST_KEYWORDS):
        return Command("BACKTEST")
    return Command("HELP")
