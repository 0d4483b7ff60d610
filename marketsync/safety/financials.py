import dataclasses
import sqlite3
import time
from datetime import date

import structlog

from ..errors import ProviderError, ProviderUnavailableError
from ..models import DataType, FinancialData
from ..pipeline.router import ProviderRouter
from ..pipeline.usage import UsageTracker
from ..storage.market import get_dividends
from ..utils import RateLimiter
from .scorer import annual_dividend_history

log = structlog.get_logger()


class FinancialDataSource:
    """Assembles scorer input: statements from a provider, dividends from the local store."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        router: ProviderRouter,
        usage: UsageTracker,
        lookback_years: int = 5,
        request_delay_seconds: float = 0.25,
        sleep=time.sleep,
    ):
        self.conn = conn
        self.router = router
        self.usage = usage
        self.lookback_years = lookback_years
        self._delay = RateLimiter(request_delay_seconds, sleep=sleep)

    def dividend_history(self, symbol: str, as_of: date):
        # One extra year so N years of growth has N steps.
        since = date(as_of.year - self.lookback_years - 1, 1, 1)
        events = get_dividends(self.conn, symbol, since=since)
        return annual_dividend_history(events, as_of, years=self.lookback_years + 1)

    def statements(self, symbol: str) -> FinancialData:
        route = self.router.route(DataType.FINANCIAL_STATEMENTS)
        if route is None:
            raise ProviderUnavailableError(DataType.FINANCIAL_STATEMENTS.value)
        last_error = None
        for client in route.clients:
            self._delay.wait()
            before = client.requests_made
            try:
                return client.fetch_financials(symbol, years=self.lookback_years)
            except ProviderError as exc:
                log.warning("financials_fetch_failed", symbol=symbol, provider=client.name, err=str(exc))
                last_error = exc
            finally:
                # Each statement request that got a response is charged separately.
                used = client.requests_made - before
                if used > 0:
                    self.usage.record_usage(client.name, count=used)
        raise last_error

    def load(self, symbol: str, as_of: date) -> FinancialData:
        data = self.statements(symbol)
        return dataclasses.replace(data, dividend_history=self.dividend_history(symbol, as_of))
