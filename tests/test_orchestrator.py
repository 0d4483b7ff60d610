import unittest
from datetime import date, timedelta

from fakes import (
    MARKET_OPEN_UTC,
    add_holding,
    bar,
    dividend,
    enable_fmp,
    fmp,
    make_conn,
    make_runtime,
    yahoo,
)
from marketsync.errors import MalformedResponseError, TransportError
from marketsync.models import DataType, Outcome, Quote
from marketsync.storage.market import get_dividends, get_price_bars, get_quote, get_sync_state
from marketsync.storage.providers import get_credential


class QuoteSyncTests(unittest.TestCase):
    def setUp(self):
        self.conn = make_conn()
        for sym in ("AAPL", "MSFT", "JNJ"):
            add_holding(self.conn, sym)
        self.yahoo = yahoo()
        self.fmp = fmp()
        self.rt = make_runtime(conn=self.conn, clients=[self.yahoo, self.fmp])

    def test_first_run_updates_every_held_symbol(self):
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual((result.total, result.updated, result.skipped, result.failed), (3, 3, 0, 0))
        self.assertEqual(self.yahoo.calls_for("quote"), ["AAPL", "JNJ", "MSFT"])
        quote = get_quote(self.conn, "AAPL")
        self.assertEqual(quote.current_price, 100.0)
        self.assertEqual(quote.provider, "yahoo_finance")
        self.assertEqual(quote.fetched_at, MARKET_OPEN_UTC)

    def test_second_run_inside_interval_skips_everything(self):
        self.rt.orchestrator.sync_quotes()
        self.rt.clock.advance(minutes=5)
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual((result.updated, result.skipped), (0, 3))
        self.assertEqual(len(self.yahoo.calls_for("quote")), 3)
        self.assertEqual(get_credential(self.conn, "yahoo_finance").usage_count_today, 3)

    def test_force_refetches_fresh_symbols(self):
        self.rt.orchestrator.sync_quotes()
        result = self.rt.orchestrator.sync_quotes(force=True)
        self.assertEqual(result.updated, 3)
        self.assertEqual(len(self.yahoo.calls_for("quote")), 6)

    def test_stale_after_interval(self):
        self.rt.orchestrator.sync_quotes()
        self.rt.clock.advance(minutes=15)
        self.assertEqual(self.rt.orchestrator.sync_quotes().updated, 3)

    def test_explicit_symbols_override_holdings(self):
        result = self.rt.orchestrator.sync_quotes(symbols=[" ko", "KO", "pep"])
        self.assertEqual(result.total, 2)
        self.assertEqual(self.yahoo.calls_for("quote"), ["KO", "PEP"])

    def test_empty_working_set(self):
        rt = make_runtime(clients=[yahoo()])
        result = rt.orchestrator.sync_quotes()
        self.assertEqual((result.total, result.updated, result.failed), (0, 0, 0))

    def test_partial_failure_does_not_abort_batch(self):
        self.yahoo.quotes["MSFT"] = MalformedResponseError("yahoo_finance", "no price for MSFT")
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual((result.total, result.updated, result.failed), (3, 2, 1))
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("MSFT: "))
        failed = [o for o in result.outcomes if o.outcome == Outcome.FAILED]
        self.assertEqual([o.symbol for o in failed], ["MSFT"])
        state = get_sync_state(self.conn, "MSFT", DataType.STOCK_QUOTES)
        self.assertIn("no price for MSFT", state.last_error)
        self.assertIsNone(state.last_success_at)

    def test_falls_back_after_primary_error(self):
        enable_fmp(self.conn)
        self.yahoo.quotes["AAPL"] = TransportError("yahoo_finance", "connection refused", reached_provider=False)
        result = self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(result.updated, 1)
        self.assertEqual(result.outcomes[0].provider, "financial_modeling_prep")
        self.assertEqual(get_quote(self.conn, "AAPL").provider, "financial_modeling_prep")
        # The connect failure never reached Yahoo, so it is not charged.
        self.assertEqual(get_credential(self.conn, "yahoo_finance").usage_count_today, 0)
        self.assertEqual(get_credential(self.conn, "financial_modeling_prep").usage_count_today, 1)

    def test_error_that_reached_provider_is_charged(self):
        self.yahoo.quotes["AAPL"] = TransportError("yahoo_finance", "HTTP 500", reached_provider=True)
        result = self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(result.failed, 1)
        self.assertEqual(get_credential(self.conn, "yahoo_finance").usage_count_today, 1)

    def test_exhausted_primary_is_never_called(self):
        enable_fmp(self.conn)
        self.conn.execute(
            "UPDATE api_keys SET usage_count_today = 2000, usage_reset_date = '2024-03-13' WHERE provider = 'yahoo_finance'"
        )
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual(result.updated, 3)
        self.assertEqual(self.yahoo.calls, [])
        self.assertEqual(len(self.fmp.calls_for("quote")), 3)

    def test_both_providers_failing(self):
        enable_fmp(self.conn)
        self.yahoo.quotes["AAPL"] = TransportError("yahoo_finance", "HTTP 503")
        self.fmp.quotes["AAPL"] = TransportError("financial_modeling_prep", "HTTP 429")
        result = self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(result.failed, 1)
        self.assertIn("financial_modeling_prep", result.errors[0])
        self.assertIsNone(get_quote(self.conn, "AAPL"))

    def test_no_provider_available(self):
        self.conn.execute("UPDATE api_keys SET is_active = 0")
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual(result.failed, 3)
        self.assertIn("no provider available for stock_quotes", result.errors[0])
        self.assertEqual(self.yahoo.calls, [])

    def test_older_quote_does_not_overwrite_price(self):
        self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.rt.clock.advance(minutes=20)
        self.yahoo.quotes["AAPL"] = Quote(
            symbol="AAPL",
            current_price=50.0,
            quote_time=MARKET_OPEN_UTC - timedelta(hours=1),
        )
        result = self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(result.updated, 1)
        quote = get_quote(self.conn, "AAPL")
        self.assertEqual(quote.current_price, 100.0)
        self.assertEqual(quote.quote_time, MARKET_OPEN_UTC)
        self.assertEqual(quote.fetched_at, MARKET_OPEN_UTC + timedelta(minutes=20))

    def test_newer_quote_replaces_price(self):
        self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.rt.clock.advance(minutes=20)
        self.yahoo.quotes["AAPL"] = Quote(
            symbol="AAPL",
            current_price=101.5,
            quote_time=MARKET_OPEN_UTC + timedelta(minutes=19),
        )
        self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(get_quote(self.conn, "AAPL").current_price, 101.5)

    def test_unexpected_exception_is_contained(self):
        self.yahoo.quotes["JNJ"] = RuntimeError("boom")
        result = self.rt.orchestrator.sync_quotes()
        self.assertEqual((result.updated, result.failed), (2, 1))
        self.assertEqual(result.errors, ["JNJ: boom"])

    def test_persistence_error_fails_symbol_without_fallback(self):
        enable_fmp(self.conn)
        self.conn.execute(
            "CREATE TRIGGER fail_quote_insert BEFORE INSERT ON stock_quotes BEGIN SELECT RAISE(ABORT, 'disk full'); END;"
        )
        result = self.rt.orchestrator.sync_quotes(symbols=["AAPL"])
        self.assertEqual(result.failed, 1)
        self.assertIn("write failed", result.errors[0])
        self.assertEqual(self.fmp.calls, [])

    def test_freshness_stats(self):
        self.rt.orchestrator.sync_quotes(symbols=["AAPL", "MSFT"])
        self.rt.clock.advance(minutes=10)
        self.rt.orchestrator.sync_quotes(symbols=["MSFT"], force=True)
        self.rt.clock.advance(minutes=6)
        stats = self.rt.orchestrator.get_freshness_stats()
        self.assertEqual(stats.total_stocks, 3)
        self.assertEqual(stats.missing_data, 1)
        self.assertEqual(stats.fresh_data, 1)
        self.assertEqual(stats.stale_data, 1)
        self.assertEqual(stats.oldest_data_timestamp, MARKET_OPEN_UTC)


class DailySyncTests(unittest.TestCase):
    def setUp(self):
        self.conn = make_conn()
        add_holding(self.conn, "KO")
        today = date(2024, 3, 13)
        self.yahoo = yahoo(
            bars={"KO": [bar("KO", today - timedelta(days=2), 59.0), bar("KO", today - timedelta(days=1), 60.0)]},
            dividends={"KO": [dividend("KO", date(2023, 11, 30), 0.46), dividend("KO", date(2024, 2, 29), 0.485)]},
        )
        self.rt = make_runtime(conn=self.conn, clients=[self.yahoo, fmp()])

    def test_historical_once_per_market_day(self):
        first = self.rt.orchestrator.sync_historical_prices(days=30)
        self.assertEqual(first.updated, 1)
        bars = get_price_bars(self.conn, "KO")
        self.assertEqual([b.close for b in bars], [59.0, 60.0])
        self.rt.clock.advance(hours=3)
        second = self.rt.orchestrator.sync_historical_prices(days=30)
        self.assertEqual(second.skipped, 1)
        self.assertEqual(len(self.yahoo.calls_for("historical")), 1)
        state = get_sync_state(self.conn, "KO", DataType.HISTORICAL_PRICES)
        self.assertEqual(state.window_days, 30)

    def test_wider_window_refetches_same_day(self):
        self.rt.orchestrator.sync_historical_prices(days=30)
        result = self.rt.orchestrator.sync_historical_prices(days=365)
        self.assertEqual(result.updated, 1)

    def test_next_market_day_refetches(self):
        self.rt.orchestrator.sync_historical_prices(days=30)
        self.rt.clock.advance(days=1)
        self.assertEqual(self.rt.orchestrator.sync_historical_prices(days=30).updated, 1)

    def test_bars_outside_window_are_dropped(self):
        self.yahoo.bars["KO"].append(bar("KO", date(2023, 1, 3), 55.0))
        self.rt.orchestrator.sync_historical_prices(days=30)
        self.assertEqual(len(get_price_bars(self.conn, "KO")), 2)

    def test_dividends_upsert_idempotently(self):
        self.rt.orchestrator.sync_dividends(days=365)
        self.rt.orchestrator.sync_dividends(days=365, force=True)
        events = get_dividends(self.conn, "KO")
        self.assertEqual([e.amount for e in events], [0.46, 0.485])
        self.assertEqual(len(self.yahoo.calls_for("dividends")), 2)

    def test_empty_history_still_counts_as_synced(self):
        self.yahoo.bars["KO"] = []
        result = self.rt.orchestrator.sync_historical_prices(days=30)
        self.assertEqual(result.updated, 1)
        self.assertEqual(get_price_bars(self.conn, "KO"), [])


if __name__ == "__main__":
    unittest.main()
