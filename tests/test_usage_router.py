import unittest
from datetime import date

from fakes import MARKET_OPEN_UTC, enable_fmp, fmp, make_conn, yahoo
from marketsync.models import DataType
from marketsync.pipeline.router import ProviderRouter
from marketsync.pipeline.usage import UsageTracker
from marketsync.providers.registry import ClientRegistry
from marketsync.storage.providers import get_credential
from marketsync.utils import FixedClock


class UsageTrackerTests(unittest.TestCase):
    def setUp(self):
        self.conn = make_conn()
        self.clock = FixedClock(MARKET_OPEN_UTC)
        self.usage = UsageTracker(self.conn, clock=self.clock)

    def test_record_usage_increments_and_stamps(self):
        self.usage.record_usage("yahoo_finance")
        self.usage.record_usage("yahoo_finance", count=2)
        cred = get_credential(self.conn, "yahoo_finance")
        self.assertEqual(cred.usage_count_today, 3)
        self.assertEqual(cred.usage_reset_date, date(2024, 3, 13))
        self.assertEqual(cred.last_used, MARKET_OPEN_UTC)

    def test_counter_resets_on_new_day(self):
        self.conn.execute(
            "UPDATE api_keys SET usage_count_today = 1999, usage_reset_date = '2024-03-12' WHERE provider = 'yahoo_finance'"
        )
        self.assertTrue(self.usage.can_make_request("yahoo_finance"))
        cred = get_credential(self.conn, "yahoo_finance")
        self.assertEqual(cred.usage_count_today, 0)
        self.assertEqual(cred.usage_reset_date, date(2024, 3, 13))

    def test_daily_limit_blocks(self):
        self.conn.execute("UPDATE api_keys SET rate_limit_per_day = 2 WHERE provider = 'yahoo_finance'")
        self.usage.record_usage("yahoo_finance", count=2)
        self.assertFalse(self.usage.can_make_request("yahoo_finance"))
        self.assertEqual(self.usage.remaining_daily("yahoo_finance"), 0)

    def test_null_daily_limit_is_unlimited(self):
        self.conn.execute("UPDATE api_keys SET rate_limit_per_day = NULL WHERE provider = 'yahoo_finance'")
        self.usage.record_usage("yahoo_finance", count=50000)
        self.assertTrue(self.usage.can_make_request("yahoo_finance"))
        self.assertIsNone(self.usage.remaining_daily("yahoo_finance"))

    def test_inactive_or_keyless_provider_cannot_request(self):
        # Seeded FMP row has no key and is inactive.
        self.assertFalse(self.usage.can_make_request("financial_modeling_prep"))
        self.conn.execute("UPDATE api_keys SET is_active = 1 WHERE provider = 'financial_modeling_prep'")
        self.assertFalse(self.usage.can_make_request("financial_modeling_prep"))
        self.assertFalse(self.usage.can_make_request("nope"))

    def test_min_interval_from_per_minute_limit(self):
        self.assertEqual(self.usage.min_interval("yahoo_finance"), 1.0)
        self.assertEqual(self.usage.min_interval("financial_modeling_prep"), 0.2)
        self.assertEqual(self.usage.min_interval("nope"), 0.0)

    def test_usage_stats(self):
        self.usage.record_usage("yahoo_finance", count=500)
        stats = self.usage.usage_stats("yahoo_finance")
        self.assertTrue(stats["available"])
        self.assertEqual(stats["daily_limit"], 2000)
        self.assertEqual(stats["remaining"], 1500)
        self.assertEqual(stats["usage_percentage"], 25.0)
        self.assertEqual(self.usage.usage_stats("nope"), {"provider": "nope", "available": False})


class ProviderRouterTests(unittest.TestCase):
    def setUp(self):
        self.conn = make_conn()
        self.usage = UsageTracker(self.conn, clock=FixedClock(MARKET_OPEN_UTC))
        self.registry = ClientRegistry([yahoo(), fmp()])
        self.router = ProviderRouter(self.conn, self.registry, self.usage)

    def _exhaust(self, provider):
        self.conn.execute(
            "UPDATE api_keys SET usage_count_today = rate_limit_per_day, usage_reset_date = '2024-03-13' WHERE provider = ?",
            (provider,),
        )

    def test_primary_only_when_fallback_has_no_key(self):
        route = self.router.route(DataType.STOCK_QUOTES)
        self.assertEqual([c.name for c in route.clients], ["yahoo_finance"])
        self.assertIsNone(route.fallback)

    def test_primary_then_fallback(self):
        enable_fmp(self.conn)
        route = self.router.route(DataType.STOCK_QUOTES)
        self.assertEqual(route.primary.name, "yahoo_finance")
        self.assertEqual(route.fallback.name, "financial_modeling_prep")

    def test_exhausted_primary_routes_to_fallback_only(self):
        enable_fmp(self.conn)
        self._exhaust("yahoo_finance")
        route = self.router.route(DataType.HISTORICAL_PRICES)
        self.assertEqual([c.name for c in route.clients], ["financial_modeling_prep"])

    def test_no_usable_provider(self):
        self._exhaust("yahoo_finance")
        self.assertIsNone(self.router.route(DataType.STOCK_QUOTES))

    def test_inactive_config_routes_nowhere(self):
        self.conn.execute("UPDATE data_provider_config SET is_active = 0 WHERE data_type = 'dividend_data'")
        self.assertIsNone(self.router.route(DataType.DIVIDEND_DATA))

    def test_unregistered_or_incapable_client_is_skipped(self):
        enable_fmp(self.conn)
        router = ProviderRouter(self.conn, ClientRegistry([yahoo()]), self.usage)
        self.assertEqual([c.name for c in router.route(DataType.STOCK_QUOTES).clients], ["yahoo_finance"])
        # Yahoo cannot serve statements even if configured as primary.
        self.conn.execute(
            "UPDATE data_provider_config SET primary_provider = 'yahoo_finance' WHERE data_type = 'financial_statements'"
        )
        self.assertIsNone(router.route(DataType.FINANCIAL_STATEMENTS))

    def test_financial_statements_need_fmp_key(self):
        self.assertIsNone(self.router.route(DataType.FINANCIAL_STATEMENTS))
        enable_fmp(self.conn)
        self.assertEqual(self.router.route(DataType.FINANCIAL_STATEMENTS).primary.name, "financial_modeling_prep")


if __name__ == "__main__":
    unittest.main()
