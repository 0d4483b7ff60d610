from datetime import date, datetime, timezone

from marketsync.config import Settings
from marketsync.db import get_conn, migrate, seed_defaults
from marketsync.models import (
    BalanceSheet,
    CashFlowStatement,
    DividendEvent,
    DividendPeriod,
    FinancialData,
    IncomeStatement,
    PriceBar,
    Quote,
)
from marketsync.providers.common import FMP_CAPABILITIES, YAHOO_CAPABILITIES, ProviderClient
from marketsync.providers.registry import ClientRegistry
from marketsync.runtime import build_runtime
from marketsync.storage.market import save_dividends
from marketsync.utils import FixedClock

# Wednesday 11:00 in New York (EDT), inside market hours.
MARKET_OPEN_UTC = datetime(2024, 3, 13, 15, 0, tzinfo=timezone.utc)


class FakeClient(ProviderClient):
    """Scripted provider. Responses are values or exceptions keyed by symbol."""

    def __init__(self, name, capabilities, quotes=None, bars=None, dividends=None, financials=None, requests_per_call=1):
        super().__init__()
        self.name = name
        self.capabilities = capabilities
        self.quotes = quotes or {}
        self.bars = bars or {}
        self.dividends = dividends or {}
        self.financials = financials or {}
        self.requests_per_call = requests_per_call
        self.calls = []

    def _answer(self, table, kind, symbol, default):
        self.calls.append((kind, symbol))
        value = table.get(symbol, default)
        if isinstance(value, Exception):
            if getattr(value, "reached_provider", False):
                self.requests_made += self.requests_per_call
            raise value
        self.requests_made += self.requests_per_call
        return value

    def fetch_quote(self, symbol):
        default = Quote(symbol=symbol, current_price=100.0, quote_time=MARKET_OPEN_UTC, provider=self.name)
        quote = self._answer(self.quotes, "quote", symbol, default)
        return Quote(**{**quote.__dict__, "provider": self.name})

    def fetch_historical(self, symbol, start, end):
        return list(self._answer(self.bars, "historical", symbol, []))

    def fetch_dividends(self, symbol, start, end):
        return list(self._answer(self.dividends, "dividends", symbol, []))

    def fetch_financials(self, symbol, years=5):
        return self._answer(self.financials, "financials", symbol, FinancialData())

    def calls_for(self, kind):
        return [sym for k, sym in self.calls if k == kind]


def yahoo(**kwargs):
    return FakeClient("yahoo_finance", YAHOO_CAPABILITIES, **kwargs)


def fmp(**kwargs):
    return FakeClient("financial_modeling_prep", FMP_CAPABILITIES, **kwargs)


def make_conn():
    conn = get_conn(":memory:")
    migrate(conn)
    seed_defaults(conn)
    return conn


def enable_fmp(conn, key="test-key"):
    conn.execute("UPDATE api_keys SET api_key = ?, is_active = 1 WHERE provider = 'financial_modeling_prep'", (key,))


def add_holding(conn, symbol, quantity=10.0, avg_cost=100.0, portfolio_id=1, portfolio_active=True):
    conn.execute(
        "INSERT OR IGNORE INTO portfolios (id, user_id, name, is_active) VALUES (?, 1, ?, ?)",
        (portfolio_id, f"p{portfolio_id}", 1 if portfolio_active else 0),
    )
    conn.execute(
        "INSERT INTO portfolio_holdings (portfolio_id, stock_symbol, quantity, avg_cost_basis, is_active) VALUES (?, ?, ?, ?, 1)",
        (portfolio_id, symbol, quantity, avg_cost),
    )


def make_runtime(conn=None, clock=None, clients=None, **overrides):
    conn = conn or make_conn()
    clock = clock or FixedClock(MARKET_OPEN_UTC)
    cfg = Settings(request_delay_seconds=0, **overrides)
    registry = ClientRegistry(clients if clients is not None else [yahoo(), fmp()])
    return build_runtime(cfg, conn=conn, clock=clock, registry=registry, sleep=lambda _s: None)


def bar(symbol, day, close=100.0):
    return PriceBar(symbol=symbol, date=day, close=close, open=close, high=close, low=close, adjusted_close=close, volume=1000)


def dividend(symbol, ex_date, amount):
    return DividendEvent(symbol=symbol, ex_date=ex_date, amount=amount)


def healthy(net_incomes=(110.0, 90.0, 110.0, 90.0), dividends_paid=-44.0, fcf=132.0, debt=50.0, equity=100.0):
    """Payout 40%, FCF coverage 3x, D/E 0.5, five non-decreasing years, earnings CV 0.1."""
    years = [str(2023 - i) for i in range(len(net_incomes))]
    return FinancialData(
        income_statements=tuple(IncomeStatement(period=y, net_income=n) for y, n in zip(years, net_incomes)),
        balance_sheets=(BalanceSheet(period="2023", total_debt=debt, shareholder_equity=equity),),
        cash_flow_statements=(CashFlowStatement(period="2023", free_cash_flow=fcf, dividends_paid=dividends_paid),),
        dividend_history=tuple(
            DividendPeriod(period=str(2023 - i), per_share=v) for i, v in enumerate((0.96, 0.92, 0.88, 0.82, 0.80, 0.75))
        ),
    )


def seed_dividend_years(conn, symbol, amounts_by_year):
    """Two equal payments per calendar year."""
    events = []
    for year, amount in amounts_by_year.items():
        events.append(dividend(symbol, date(year, 3, 1), amount / 2))
        events.append(dividend(symbol, date(year, 9, 1), amount / 2))
    save_dividends(conn, symbol, events, MARKET_OPEN_UTC)


KO_DIVIDENDS = {2018: 1.56, 2019: 1.60, 2020: 1.64, 2021: 1.68, 2022: 1.76, 2023: 1.84}
