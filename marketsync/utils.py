import time as time_module
from datetime import datetime, date, timedelta, timezone
from typing import Protocol
from dateutil import tz


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a given instant; `advance` moves it forward."""

    def __init__(self, now: datetime):
        self._now = ensure_utc(now)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta):
        self._now = self._now + timedelta(**delta)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="seconds")


def parse_iso(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text or text.upper() == "N/A":
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def coerce_float(val):
    if val is None:
        return None
    try:
        out = float(val)
    except (TypeError, ValueError):
        return None
    if out != out:  # NaN
        return None
    return out


def to_local(dt_utc: datetime, local_tz: str) -> datetime:
    tzinfo = tz.gettz(local_tz)
    return ensure_utc(dt_utc).astimezone(tzinfo)


def to_local_date(dt_utc: datetime, local_tz: str) -> date:
    return to_local(dt_utc, local_tz).date()


def retry_call(
    fn,
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
    retry_on: tuple = (Exception,),
    sleep=time_module.sleep,
):
    last_exc = None
    for attempt in range(1, max(1, attempts) + 1):
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if attempt >= attempts:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            if delay > 0:
                sleep(delay)
    raise last_exc


class RateLimiter:
    """Enforces a minimum spacing between consecutive calls to `wait`."""

    def __init__(self, min_interval_seconds: float, sleep=time_module.sleep, monotonic=time_module.monotonic):
        self.min_interval_seconds = float(min_interval_seconds or 0.0)
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call = None

    def wait(self, min_interval_seconds: float | None = None):
        interval = self.min_interval_seconds if min_interval_seconds is None else float(min_interval_seconds)
        now = self._monotonic()
        if self._last_call is not None and interval > 0:
            sleep_for = interval - (now - self._last_call)
            if sleep_for > 0:
                self._sleep(sleep_for)
        self._last_call = self._monotonic()
