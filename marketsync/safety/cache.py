import sqlite3
from datetime import datetime, timedelta

import structlog

from ..errors import SyncError
from ..models import FactorScore, SafetyCacheEntry, SafetyResult
from ..storage import safety as safety_store
from ..utils import Clock, SystemClock, ensure_utc, to_local_date
from .financials import FinancialDataSource
from .scorer import DESCRIPTIONS, WEIGHTS, score_dividend_safety

log = structlog.get_logger()


def _entry_to_result(entry: SafetyCacheEntry, is_cached: bool = True) -> SafetyResult:
    factors = {}
    for name in safety_store.FACTOR_NAMES:
        if name not in entry.factor_scores:
            continue
        factors[name] = FactorScore(
            name=name,
            value=entry.factor_values.get(name),
            score=entry.factor_scores[name],
            weight=WEIGHTS[name],
            description=DESCRIPTIONS[name],
        )
    return SafetyResult(
        score=entry.score,
        grade=entry.grade,
        factors=factors,
        warnings=tuple(entry.warnings),
        last_updated=entry.last_updated,
        is_cached=is_cached,
    )


class SafetyCache:
    """Per-symbol dividend safety scores, recomputed at most once per TTL.

    A zero score always counts as needing an update, so failed computations
    are retried on the next run.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        source: FinancialDataSource | None = None,
        clock: Clock | None = None,
        ttl_hours: int = 24,
        retention_days: int = 30,
        market_timezone: str = "America/New_York",
    ):
        self.conn = conn
        self.source = source
        self.clock = clock or SystemClock()
        self.ttl = timedelta(hours=ttl_hours)
        self.retention_days = retention_days
        self.market_timezone = market_timezone

    def get(self, symbol: str) -> SafetyResult | None:
        entry = safety_store.get_entry(self.conn, symbol.upper())
        return _entry_to_result(entry) if entry else None

    def _is_stale(self, entry: SafetyCacheEntry | None, now: datetime) -> bool:
        if entry is None or entry.last_updated is None or entry.score == 0:
            return True
        return now - ensure_utc(entry.last_updated) > self.ttl

    def needs_update(self, symbol: str) -> bool:
        entry = safety_store.get_entry(self.conn, symbol.upper())
        return self._is_stale(entry, ensure_utc(self.clock.now()))

    def set(self, symbol: str, result: SafetyResult) -> SafetyResult:
        symbol = symbol.upper()
        now = ensure_utc(self.clock.now())
        existing = safety_store.get_entry(self.conn, symbol)
        entry = SafetyCacheEntry(
            symbol=symbol,
            score=result.score,
            grade=result.grade,
            factor_scores={name: f.score for name, f in result.factors.items()},
            factor_values={name: f.value for name, f in result.factors.items()},
            warnings=list(result.warnings),
            last_updated=now,
            created_at=existing.created_at if existing and existing.created_at else now,
        )
        safety_store.put_entry(self.conn, entry)
        return _entry_to_result(entry, is_cached=False)

    def compute(self, symbol: str) -> SafetyResult:
        """Score a symbol from fresh data; failures yield a zero score with a warning."""
        symbol = symbol.upper()
        if self.source is None:
            return SafetyResult(score=0, grade="N/A", warnings=("no financial data source configured",))
        as_of = to_local_date(self.clock.now(), self.market_timezone)
        try:
            data = self.source.load(symbol, as_of)
        except SyncError as exc:
            log.warning("safety_data_unavailable", symbol=symbol, err=str(exc))
            return SafetyResult(score=0, grade="N/A", warnings=(f"Error fetching financial data: {exc}",))
        return score_dividend_safety(data)

    def bulk_update(self, symbols: list[str]) -> dict[str, SafetyResult]:
        out = {}
        for symbol in sorted({s.strip().upper() for s in symbols if s and s.strip()}):
            try:
                result = self.compute(symbol)
            except Exception as exc:
                log.exception("safety_compute_failed", symbol=symbol)
                result = SafetyResult(score=0, grade="N/A", warnings=(f"Error calculating safety score: {exc}",))
            out[symbol] = self.set(symbol, result)
            log.info("safety_cache_updated", symbol=symbol, score=result.score, grade=result.grade)
        return out

    def get_safety_score(self, symbol: str) -> SafetyResult:
        symbol = symbol.upper()
        if not self.needs_update(symbol):
            return self.get(symbol)
        return self.bulk_update([symbol])[symbol]

    def symbols_needing_update(self, symbols: list[str]) -> list[str]:
        now = ensure_utc(self.clock.now())
        out = []
        for symbol in sorted({s.upper() for s in symbols if s}):
            if self._is_stale(safety_store.get_entry(self.conn, symbol), now):
                out.append(symbol)
        return out

    def cleanup(self, max_age_days: int | None = None) -> int:
        days = self.retention_days if max_age_days is None else max_age_days
        cutoff = ensure_utc(self.clock.now()) - timedelta(days=days)
        deleted = safety_store.delete_older_than(self.conn, cutoff)
        log.info("safety_cache_cleanup", deleted=deleted, max_age_days=days)
        return deleted

    def stats(self) -> dict:
        now = ensure_utc(self.clock.now())
        entries = safety_store.list_entries(self.conn)
        fresh = sum(
            1 for e in entries if e.last_updated is not None and now - ensure_utc(e.last_updated) <= self.ttl
        )
        total = len(entries)
        recent = sorted(
            (e for e in entries if e.last_updated is not None),
            key=lambda e: e.last_updated,
            reverse=True,
        )[:10]
        return {
            "total_cached": total,
            "fresh_entries": fresh,
            "stale_entries": total - fresh,
            "cache_hit_rate": round(fresh / total * 100, 2) if total else 0.0,
            "recent": [
                {
                    "symbol": e.symbol,
                    "score": e.score,
                    "grade": e.grade,
                    "age_hours": round((now - ensure_utc(e.last_updated)).total_seconds() / 3600, 1),
                }
                for e in recent
            ],
        }
