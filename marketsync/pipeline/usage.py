import sqlite3

import structlog

from ..db import transaction
from ..models import ProviderCredential
from ..storage.providers import get_credential, write_usage
from ..utils import Clock, SystemClock, to_local_date

log = structlog.get_logger()


class UsageTracker:
    """Per-provider daily quota bookkeeping on the api_keys table.

    The day-rollover reset happens in the same transaction as the read or
    increment it guards, so a counter is reset exactly once per day.
    A NULL daily limit means unlimited.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Clock | None = None, usage_tz: str = "UTC"):
        self.conn = conn
        self.clock = clock or SystemClock()
        self.usage_tz = usage_tz

    def _today(self):
        return to_local_date(self.clock.now(), self.usage_tz)

    def _load_current(self, provider: str) -> ProviderCredential | None:
        cred = get_credential(self.conn, provider)
        if cred is None:
            return None
        today = self._today()
        if cred.usage_reset_date != today:
            write_usage(self.conn, provider, 0, today)
            cred.usage_count_today = 0
            cred.usage_reset_date = today
        return cred

    def can_make_request(self, provider: str) -> bool:
        with transaction(self.conn, immediate=True):
            cred = self._load_current(provider)
        if cred is None or not cred.is_usable():
            return False
        if cred.rate_limit_per_day is None:
            return True
        return cred.usage_count_today < cred.rate_limit_per_day

    def record_usage(self, provider: str, count: int = 1):
        with transaction(self.conn, immediate=True):
            cred = self._load_current(provider)
            if cred is None:
                log.warning("usage_unknown_provider", provider=provider)
                return
            write_usage(self.conn, provider, cred.usage_count_today + count, cred.usage_reset_date, self.clock.now())

    def remaining_daily(self, provider: str) -> int | None:
        with transaction(self.conn, immediate=True):
            cred = self._load_current(provider)
        if cred is None:
            return 0
        if cred.rate_limit_per_day is None:
            return None
        return max(0, cred.rate_limit_per_day - cred.usage_count_today)

    def min_interval(self, provider: str) -> float:
        """Seconds between calls implied by the per-minute limit; 0 when unlimited."""
        cred = get_credential(self.conn, provider)
        if cred is None or not cred.rate_limit_per_minute or cred.rate_limit_per_minute <= 0:
            return 0.0
        return 60.0 / cred.rate_limit_per_minute

    def usage_stats(self, provider: str) -> dict:
        with transaction(self.conn, immediate=True):
            cred = self._load_current(provider)
        if cred is None:
            return {"provider": provider, "available": False}
        limit = cred.rate_limit_per_day
        used = cred.usage_count_today
        return {
            "provider": provider,
            "available": cred.is_usable() and (limit is None or used < limit),
            "daily_limit": limit,
            "usage_today": used,
            "remaining": None if limit is None else max(0, limit - used),
            "usage_percentage": round(used / limit * 100, 2) if limit else 0.0,
            "last_used": cred.last_used.isoformat() if cred.last_used else None,
        }
