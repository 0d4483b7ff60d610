from datetime import datetime, date, time, timedelta
from enum import Enum

from ..config import Settings
from ..models import SyncState
from ..utils import Clock, SystemClock, ensure_utc, to_local, to_local_date


class Session(str, Enum):
    MARKET_HOURS = "market_hours"
    AFTER_HOURS = "after_hours"
    WEEKEND = "weekend"


def _parse_hhmm(value: str) -> time:
    hh, mm = value.split(":")
    return time(int(hh), int(mm))


class FreshnessPolicy:
    """Decides whether cached market data must be refetched.

    Quotes go stale after a session-dependent interval. Historical bars and
    dividends are refreshed at most once per market-timezone calendar day,
    or sooner when a wider window is requested than was last fetched.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        market_timezone: str = "America/New_York",
        open_time: str = "09:30",
        close_time: str = "16:00",
        market_hours_minutes: int = 15,
        after_hours_minutes: int = 30,
    ):
        self.clock = clock or SystemClock()
        self.market_timezone = market_timezone
        self.open_time = _parse_hhmm(open_time)
        self.close_time = _parse_hhmm(close_time)
        self.market_hours_interval = timedelta(minutes=market_hours_minutes)
        self.after_hours_interval = timedelta(minutes=after_hours_minutes)

    @classmethod
    def from_settings(cls, cfg: Settings, clock: Clock | None = None) -> "FreshnessPolicy":
        return cls(
            clock=clock,
            market_timezone=cfg.market_timezone,
            open_time=cfg.market_open_time,
            close_time=cfg.market_close_time,
            market_hours_minutes=cfg.quote_cache_market_hours,
            after_hours_minutes=cfg.quote_cache_after_hours,
        )

    def now(self) -> datetime:
        return ensure_utc(self.clock.now())

    def session(self, now: datetime | None = None) -> Session:
        local = to_local(now or self.now(), self.market_timezone)
        if local.weekday() >= 5:
            return Session.WEEKEND
        # Both bounds inclusive.
        if self.open_time <= local.time().replace(tzinfo=None) <= self.close_time:
            return Session.MARKET_HOURS
        return Session.AFTER_HOURS

    def is_market_hours(self, now: datetime | None = None) -> bool:
        return self.session(now) == Session.MARKET_HOURS

    def refresh_interval(self, now: datetime | None = None) -> timedelta:
        if self.session(now) == Session.MARKET_HOURS:
            return self.market_hours_interval
        return self.after_hours_interval

    def is_quote_stale(self, last_updated: datetime | None, force: bool = False) -> bool:
        if force or last_updated is None:
            return True
        now = self.now()
        return now - ensure_utc(last_updated) >= self.refresh_interval(now)

    def market_date(self, when: datetime | None = None) -> date:
        return to_local_date(when or self.now(), self.market_timezone)

    def is_daily_stale(self, state: SyncState | None, window_days: int | None = None, force: bool = False) -> bool:
        if force or state is None or state.last_success_at is None:
            return True
        if self.market_date(state.last_success_at) < self.market_date():
            return True
        if window_days is not None and (state.window_days or 0) < window_days:
            return True
        return False
