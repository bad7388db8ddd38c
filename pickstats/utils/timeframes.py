"""Скользящие окна статистики."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum


class Timeframe(str, Enum):
    SIX_HOURS = "six_hours"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL_TIME = "all_time"

    @property
    def window(self) -> timedelta | None:
        """Длина окна; None для all_time (без нижней границы)."""

        return _WINDOWS[self]

    def start(self, now: datetime) -> datetime | None:
        window = self.window
        return None if window is None else now - window

    def contains(self, moment: datetime, now: datetime) -> bool:
        """Правооткрытый интервал [now - window, now)."""

        if moment >= now:
            return False
        start = self.start(now)
        return start is None or moment >= start


_WINDOWS: dict[Timeframe, timedelta | None] = {
    Timeframe.SIX_HOURS: timedelta(hours=6),
    Timeframe.DAY: timedelta(days=1),
    Timeframe.WEEK: timedelta(weeks=1),
    Timeframe.MONTH: timedelta(days=30),
    Timeframe.ALL_TIME: None,
}


__all__ = ["Timeframe"]
