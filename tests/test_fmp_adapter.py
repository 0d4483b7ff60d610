import unittest
from datetime import date, datetime, timezone

import httpx

from marketsync.errors import MalformedResponseError, TransportError
from marketsync.models import MarketState
from marketsync.providers.fmp_adapter import FMPAdapter


def adapter(handler, attempts=2):
    return FMPAdapter(
        api_key="k",
        base_url="https://fmp.test/api/v3",
        retry_attempts=attempts,
        retry_backoff=0,
        transport=httpx.MockTransport(handler),
        sleep=lambda _s: None,
    )


class FMPQuoteTests(unittest.TestCase):
    def test_parses_quote(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json=[
                    {
                        "symbol": "AAPL",
                        "name": "Apple Inc.",
                        "price": 172.5,
                        "previousClose": 170.0,
                        "volume": 51000000,
                        "marketCap": 2660000000000,
                        "yearHigh": 199.62,
                        "yearLow": 143.9,
                        "exchange": "NASDAQ",
                        "timestamp": 1710342000,
                    }
                ],
            )

        client = adapter(handler)
        quote = client.fetch_quote("AAPL")
        self.assertEqual(seen[0].url.path, "/api/v3/quote/AAPL")
        self.assertEqual(seen[0].url.params["apikey"], "k")
        self.assertEqual(quote.current_price, 172.5)
        self.assertAlmostEqual(quote.change, 2.5)
        self.assertAlmostEqual(quote.change_percent, 2.5 / 170.0 * 100)
        self.assertEqual(quote.quote_time, datetime.fromtimestamp(1710342000, tz=timezone.utc))
        self.assertEqual(quote.market_state, MarketState.CLOSED)
        self.assertEqual(quote.fifty_two_week_high, 199.62)
        self.assertEqual(quote.provider, "financial_modeling_prep")
        self.assertEqual(client.requests_made, 1)

    def test_empty_list_is_malformed(self):
        client = adapter(lambda request: httpx.Response(200, json=[]))
        with self.assertRaises(MalformedResponseError):
            client.fetch_quote("ZZZZ")

    def test_http_error_reached_provider(self):
        client = adapter(lambda request: httpx.Response(429, json={"message": "limit"}))
        with self.assertRaises(TransportError) as ctx:
            client.fetch_quote("AAPL")
        self.assertTrue(ctx.exception.reached_provider)
        self.assertIn("HTTP 429", str(ctx.exception))
        self.assertEqual(client.requests_made, 1)

    def test_connect_failure_retried_and_not_charged(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = adapter(handler, attempts=3)
        with self.assertRaises(TransportError) as ctx:
            client.fetch_quote("AAPL")
        self.assertFalse(ctx.exception.reached_provider)
        self.assertEqual(len(attempts), 3)
        self.assertEqual(client.requests_made, 0)

    def test_transient_failure_then_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json=[{"price": 10.0}])

        quote = adapter(handler).fetch_quote("F")
        self.assertEqual(quote.current_price, 10.0)
        self.assertEqual(len(calls), 2)

    def test_error_message_payload(self):
        client = adapter(lambda request: httpx.Response(200, json={"Error Message": "Invalid API KEY."}))
        with self.assertRaises(MalformedResponseError) as ctx:
            client.fetch_quote("AAPL")
        self.assertIn("Invalid API KEY.", str(ctx.exception))

    def test_invalid_json(self):
        client = adapter(lambda request: httpx.Response(200, text="<html>"))
        with self.assertRaises(MalformedResponseError):
            client.fetch_quote("AAPL")


class FMPHistoryTests(unittest.TestCase):
    def test_historical_bars_sorted_and_windowed(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "symbol": "KO",
                    "historical": [
                        {"date": "2024-03-12", "open": 60.1, "high": 60.5, "low": 59.8, "close": 60.2, "adjClose": 60.2, "volume": 1200},
                        {"date": "2024-03-11", "open": 59.9, "high": 60.3, "low": 59.5, "close": 60.0, "adjClose": 60.0, "volume": 1100},
                        {"date": "2024-01-02", "open": 58.0, "high": 58.4, "low": 57.9, "close": 58.1, "adjClose": 58.1, "volume": 900},
                    ],
                },
            )

        bars = adapter(handler).fetch_historical("KO", date(2024, 3, 1), date(2024, 3, 13))
        self.assertEqual(seen[0].url.params["from"], "2024-03-01")
        self.assertEqual(seen[0].url.params["to"], "2024-03-13")
        self.assertEqual([b.date for b in bars], [date(2024, 3, 11), date(2024, 3, 12)])
        self.assertEqual(bars[1].close, 60.2)
        self.assertEqual(bars[1].volume, 1200)
        self.assertEqual(bars[0].provider, "financial_modeling_prep")

    def test_empty_history(self):
        bars = adapter(lambda request: httpx.Response(200, json={})).fetch_historical("KO", date(2024, 3, 1), date(2024, 3, 13))
        self.assertEqual(bars, [])

    def test_dividends(self):
        payload = {
            "symbol": "KO",
            "historical": [
                {"date": "2024-02-29", "adjDividend": 0.485, "dividend": 0.485, "paymentDate": "2024-04-01", "recordDate": "2024-03-01", "declarationDate": "2024-02-15"},
                {"date": "2023-11-30", "dividend": 0.46, "paymentDate": "", "recordDate": ""},
                {"date": "2019-11-28", "adjDividend": 0.40},
                {"date": "2023-06-15", "adjDividend": 0},
            ],
        }
        events = adapter(lambda request: httpx.Response(200, json=payload)).fetch_dividends("KO", date(2023, 3, 13), date(2024, 3, 13))
        self.assertEqual([(e.ex_date, e.amount) for e in events], [(date(2023, 11, 30), 0.46), (date(2024, 2, 29), 0.485)])
        self.assertEqual(events[1].payment_date, date(2024, 4, 1))
        self.assertIsNone(events[0].payment_date)


class FMPFinancialsTests(unittest.TestCase):
    def test_three_statements(self):
        def handler(request):
            path = request.url.path
            self.assertEqual(request.url.params["period"], "annual")
            if path.endswith("/income-statement/KO"):
                return httpx.Response(200, json=[
                    {"date": "2022-12-31", "calendarYear": "2022", "netIncome": 9.5e9, "eps": 2.19},
                    {"date": "2023-12-31", "calendarYear": "2023", "netIncome": 10.7e9, "eps": 2.47},
                ])
            if path.endswith("/balance-sheet-statement/KO"):
                return httpx.Response(200, json=[{"date": "2023-12-31", "totalDebt": 42e9, "totalStockholdersEquity": 26e9}])
            if path.endswith("/cash-flow-statement/KO"):
                return httpx.Response(200, json=[{"date": "2023-12-31", "freeCashFlow": 9.7e9, "dividendsPaid": -7.95e9}])
            return httpx.Response(404)

        client = adapter(handler)
        data = client.fetch_financials("KO", years=5)
        self.assertEqual([s.period for s in data.income_statements], ["2023", "2022"])
        self.assertEqual(data.income_statements[0].net_income, 10.7e9)
        self.assertEqual(data.balance_sheets[0].shareholder_equity, 26e9)
        self.assertEqual(data.cash_flow_statements[0].dividends_paid, -7.95e9)
        self.assertEqual(data.dividend_history, ())
        self.assertEqual(client.requests_made, 3)


if __name__ == "__main__":
    unittest.main()
