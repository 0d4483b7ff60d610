import sqlite3
import time
from datetime import timedelta

import structlog

from ..db import transaction
from ..errors import PersistenceError, ProviderError, ProviderUnavailableError, SyncError
from ..models import BatchResult, DataType, FreshnessStats, Outcome, SymbolOutcome
from ..storage.market import (
    get_quote,
    get_quotes,
    get_sync_state,
    mark_sync_failure,
    mark_sync_success,
    save_dividends,
    save_price_bars,
    save_quote,
)
from ..utils import Clock, RateLimiter, SystemClock
from .freshness import FreshnessPolicy
from .router import ProviderRouter
from .symbols import resolve_symbols
from .usage import UsageTracker

log = structlog.get_logger()


class FetchOrchestrator:
    """Sequential, per-symbol market-data sync.

    For each symbol: skip when fresh, otherwise route to a provider, try the
    primary then at most one fallback, persist on success. One symbol's
    failure never aborts the batch.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        router: ProviderRouter,
        usage: UsageTracker,
        freshness: FreshnessPolicy,
        clock: Clock | None = None,
        request_delay_seconds: float = 0.25,
        historical_days: int = 365,
        sleep=time.sleep,
        monotonic=time.monotonic,
    ):
        self.conn = conn
        self.router = router
        self.usage = usage
        self.freshness = freshness
        self.clock = clock or SystemClock()
        self.historical_days = historical_days
        self._sleep = sleep
        self._monotonic = monotonic
        self._delay = RateLimiter(request_delay_seconds, sleep=sleep, monotonic=monotonic)
        self._provider_limiters: dict[str, RateLimiter] = {}

    # -- public operations -------------------------------------------------

    def sync_quotes(self, force: bool = False, symbols=None) -> BatchResult:
        def is_fresh(symbol):
            quote = get_quote(self.conn, symbol)
            return not self.freshness.is_quote_stale(quote.fetched_at if quote else None, force=force)

        def fetch(client, symbol):
            return client.fetch_quote(symbol)

        def persist(symbol, quote, provider):
            quote.symbol = symbol
            now = self.clock.now()
            applied = save_quote(self.conn, quote, now)
            mark_sync_success(self.conn, symbol, DataType.STOCK_QUOTES, provider, now)
            if not applied:
                log.info("quote_older_than_stored", symbol=symbol, provider=provider)

        return self._run_batch(DataType.STOCK_QUOTES, symbols, is_fresh, fetch, persist, force=force)

    def sync_historical_prices(self, days: int | None = None, force: bool = False, symbols=None) -> BatchResult:
        days = int(days or self.historical_days)
        end = self.freshness.market_date()
        start = end - timedelta(days=days)

        def is_fresh(symbol):
            state = get_sync_state(self.conn, symbol, DataType.HISTORICAL_PRICES)
            return not self.freshness.is_daily_stale(state, window_days=days, force=force)

        def fetch(client, symbol):
            return client.fetch_historical(symbol, start, end)

        def persist(symbol, bars, provider):
            now = self.clock.now()
            for bar in bars:
                bar.symbol = symbol
            save_price_bars(self.conn, symbol, [b for b in bars if start <= b.date <= end], now)
            mark_sync_success(self.conn, symbol, DataType.HISTORICAL_PRICES, provider, now, window_days=days)

        return self._run_batch(DataType.HISTORICAL_PRICES, symbols, is_fresh, fetch, persist, force=force, days=days)

    def sync_dividends(self, days: int | None = None, force: bool = False, symbols=None) -> BatchResult:
        days = int(days or self.historical_days)
        end = self.freshness.market_date()
        start = end - timedelta(days=days)

        def is_fresh(symbol):
            state = get_sync_state(self.conn, symbol, DataType.DIVIDEND_DATA)
            return not self.freshness.is_daily_stale(state, window_days=days, force=force)

        def fetch(client, symbol):
            return client.fetch_dividends(symbol, start, end)

        def persist(symbol, events, provider):
            now = self.clock.now()
            for ev in events:
                ev.symbol = symbol
            save_dividends(self.conn, symbol, [e for e in events if start <= e.ex_date <= end], now)
            mark_sync_success(self.conn, symbol, DataType.DIVIDEND_DATA, provider, now, window_days=days)

        return self._run_batch(DataType.DIVIDEND_DATA, symbols, is_fresh, fetch, persist, force=force, days=days)

    def get_freshness_stats(self, symbols=None) -> FreshnessStats:
        symbols = resolve_symbols(self.conn, symbols)
        quotes = get_quotes(self.conn, symbols)
        stats = FreshnessStats(total_stocks=len(symbols))
        for sym in symbols:
            quote = quotes.get(sym)
            if quote is None:
                stats.missing_data += 1
                continue
            if self.freshness.is_quote_stale(quote.fetched_at):
                stats.stale_data += 1
            else:
                stats.fresh_data += 1
            if quote.quote_time is not None:
                if stats.oldest_data_timestamp is None or quote.quote_time < stats.oldest_data_timestamp:
                    stats.oldest_data_timestamp = quote.quote_time
                if stats.newest_data_timestamp is None or quote.quote_time > stats.newest_data_timestamp:
                    stats.newest_data_timestamp = quote.quote_time
        return stats

    # -- batch machinery ---------------------------------------------------

    def _run_batch(self, data_type: DataType, symbols, is_fresh, fetch, persist, **context) -> BatchResult:
        symbols = resolve_symbols(self.conn, symbols)
        result = BatchResult(data_type=data_type, total=len(symbols), started_at=self.clock.now())
        log.info("sync_batch_started", data_type=data_type.value, symbols_count=len(symbols), **context)
        for symbol in symbols:
            try:
                outcome = self._sync_symbol(data_type, symbol, is_fresh, fetch, persist)
            except SyncError as exc:
                outcome = self._failed(data_type, symbol, exc)
            except Exception as exc:
                log.exception("sync_symbol_unexpected_error", data_type=data_type.value, symbol=symbol)
                outcome = self._failed(data_type, symbol, exc)
            result.record(outcome)
        result.finished_at = self.clock.now()
        log.info(
            "sync_batch_finished",
            data_type=data_type.value,
            total=result.total,
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    def _sync_symbol(self, data_type: DataType, symbol: str, is_fresh, fetch, persist) -> SymbolOutcome:
        if is_fresh(symbol):
            log.debug("sync_symbol_skipped", data_type=data_type.value, symbol=symbol)
            return SymbolOutcome(symbol=symbol, outcome=Outcome.SKIPPED)

        route = self.router.route(data_type)
        if route is None:
            raise ProviderUnavailableError(data_type.value)

        last_error = None
        for attempt, client in enumerate(route.clients):
            if attempt > 0:
                log.info(
                    "provider_fallback",
                    data_type=data_type.value,
                    symbol=symbol,
                    provider=client.name,
                    err=str(last_error),
                )
            self._throttle(client.name)
            try:
                payload = fetch(client, symbol)
            except ProviderError as exc:
                if exc.reached_provider:
                    self.usage.record_usage(client.name)
                log.warning(
                    "provider_error",
                    data_type=data_type.value,
                    symbol=symbol,
                    provider=client.name,
                    reached_provider=exc.reached_provider,
                    err=str(exc),
                )
                last_error = exc
                continue

            self.usage.record_usage(client.name)
            try:
                with transaction(self.conn, immediate=True):
                    persist(symbol, payload, client.name)
            except sqlite3.Error as exc:
                raise PersistenceError(f"{data_type.value} write failed for {symbol}: {exc}") from exc
            log.info("sync_symbol_updated", data_type=data_type.value, symbol=symbol, provider=client.name)
            return SymbolOutcome(symbol=symbol, outcome=Outcome.UPDATED, provider=client.name)

        raise last_error

    def _throttle(self, provider: str):
        self._delay.wait()
        limiter = self._provider_limiters.get(provider)
        if limiter is None:
            limiter = RateLimiter(self.usage.min_interval(provider), sleep=self._sleep, monotonic=self._monotonic)
            self._provider_limiters[provider] = limiter
        limiter.wait()

    def _failed(self, data_type: DataType, symbol: str, exc: Exception) -> SymbolOutcome:
        message = f"{symbol}: {exc}"
        log.error("sync_symbol_failed", data_type=data_type.value, symbol=symbol, err=str(exc))
        try:
            mark_sync_failure(self.conn, symbol, data_type, str(exc), self.clock.now())
        except sqlite3.Error as db_exc:
            log.error("sync_state_write_failed", symbol=symbol, err=str(db_exc))
        return SymbolOutcome(symbol=symbol, outcome=Outcome.FAILED, error=message)
