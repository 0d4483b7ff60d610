from __future__ import annotations

from datetime import date

import httpx
import pandas as pd
import structlog

from ..errors import MalformedResponseError, TransportError
from ..models import (
    BalanceSheet,
    CashFlowStatement,
    DividendEvent,
    DividendType,
    FinancialData,
    IncomeStatement,
    PriceBar,
    Quote,
)
from ..utils import coerce_float, parse_date, retry_call
from .common import FMP_CAPABILITIES, ProviderClient, build_quote, frame_to_bars, normalize_prices

log = structlog.get_logger()

DEFAULT_BASE_URL = "https://financialmodelingprep.com/api/v3"


class FMPAdapter(ProviderClient):
    """Financial Modeling Prep REST client.

    Transport failures (connect, DNS, timeouts) are retried with backoff and
    never charged against quota. Any HTTP response, including 4xx/5xx, counts
    as a request that reached the provider.
    """

    name = "financial_modeling_prep"
    capabilities = FMP_CAPABILITIES

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        retry_attempts: int = 2,
        retry_backoff: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep=None,
    ):
        super().__init__()
        self.api_key = api_key or ""
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"accept": "application/json"},
        )

    def close(self):
        self.client.close()

    def _get(self, path: str, params: dict | None = None):
        query = dict(params or {})
        query["apikey"] = self.api_key

        def _call():
            return self.client.get(path, params=query)

        retry_kwargs = {
            "attempts": self.retry_attempts,
            "base_delay": self.retry_backoff,
            "retry_on": (httpx.TransportError,),
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        try:
            resp = retry_call(_call, **retry_kwargs)
        except httpx.TransportError as exc:
            raise TransportError(self.name, f"{path}: {exc.__class__.__name__}", reached_provider=False) from exc
        self.requests_made += 1
        if resp.status_code != 200:
            raise TransportError(self.name, f"{path}: HTTP {resp.status_code}", reached_provider=True)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(self.name, f"{path}: invalid JSON") from exc
        if isinstance(payload, dict) and payload.get("Error Message"):
            raise MalformedResponseError(self.name, f"{path}: {payload['Error Message']}")
        return payload

    def _list(self, path: str, params: dict | None = None) -> list[dict]:
        payload = self._get(path, params)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise MalformedResponseError(self.name, f"{path}: expected a list")
        return [row for row in payload if isinstance(row, dict)]

    def _historical(self, path: str, params: dict | None = None) -> list[dict]:
        payload = self._get(path, params)
        if payload in (None, {}, []):
            return []
        if not isinstance(payload, dict):
            raise MalformedResponseError(self.name, f"{path}: expected an object")
        rows = payload.get("historical")
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise MalformedResponseError(self.name, f"{path}: historical is not a list")
        return [row for row in rows if isinstance(row, dict)]

    def fetch_quote(self, symbol: str) -> Quote:
        rows = self._list(f"/quote/{symbol}")
        if not rows:
            raise MalformedResponseError(self.name, f"no quote for {symbol}")
        q = rows[0]
        return build_quote(
            self.name,
            symbol,
            q.get("price"),
            q.get("previousClose"),
            q.get("timestamp"),
            volume=q.get("volume"),
            market_cap=q.get("marketCap"),
            high_52w=q.get("yearHigh"),
            low_52w=q.get("yearLow"),
            market_state=q.get("marketState"),
            name=q.get("name"),
            exchange=q.get("exchange"),
        )

    def fetch_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        rows = self._historical(
            f"/historical-price-full/{symbol}",
            {"from": start.isoformat(), "to": end.isoformat()},
        )
        if not rows:
            return []
        norm = normalize_prices(pd.DataFrame(rows), symbol)
        if norm is None:
            raise MalformedResponseError(self.name, f"history for {symbol} has no date/close")
        return frame_to_bars(norm, symbol, self.name, start, end)

    def fetch_dividends(self, symbol: str, start: date, end: date) -> list[DividendEvent]:
        rows = self._historical(f"/historical-price-full/stock_dividend/{symbol}")
        events = []
        for row in rows:
            ex_date = parse_date(row.get("date"))
            amount = coerce_float(row.get("adjDividend"))
            if amount is None:
                amount = coerce_float(row.get("dividend"))
            if ex_date is None or amount is None or amount <= 0:
                continue
            if ex_date < start or ex_date > end:
                continue
            events.append(
                DividendEvent(
                    symbol=symbol,
                    ex_date=ex_date,
                    amount=amount,
                    payment_date=parse_date(row.get("paymentDate")),
                    record_date=parse_date(row.get("recordDate")),
                    declaration_date=parse_date(row.get("declarationDate")),
                    dividend_type=DividendType.REGULAR,
                    provider=self.name,
                )
            )
        events.sort(key=lambda e: e.ex_date)
        return events

    def fetch_financials(self, symbol: str, years: int = 5) -> FinancialData:
        params = {"period": "annual", "limit": int(years)}
        income = self._list(f"/income-statement/{symbol}", params)
        balance = self._list(f"/balance-sheet-statement/{symbol}", params)
        cashflow = self._list(f"/cash-flow-statement/{symbol}", params)
        log.debug(
            "fmp_financials_fetched",
            symbol=symbol,
            income=len(income),
            balance=len(balance),
            cashflow=len(cashflow),
        )
        return FinancialData(
            income_statements=tuple(
                IncomeStatement(
                    period=_period(row),
                    net_income=coerce_float(row.get("netIncome")),
                    eps=coerce_float(row.get("eps")),
                )
                for row in _most_recent_first(income)
            ),
            balance_sheets=tuple(
                BalanceSheet(
                    period=_period(row),
                    total_debt=coerce_float(row.get("totalDebt")),
                    shareholder_equity=coerce_float(row.get("totalStockholdersEquity")),
                )
                for row in _most_recent_first(balance)
            ),
            cash_flow_statements=tuple(
                CashFlowStatement(
                    period=_period(row),
                    free_cash_flow=coerce_float(row.get("freeCashFlow")),
                    dividends_paid=coerce_float(row.get("dividendsPaid")),
                )
                for row in _most_recent_first(cashflow)
            ),
        )


def _period(row: dict) -> str:
    return str(row.get("calendarYear") or row.get("date") or "")


def _most_recent_first(rows: list[dict]) -> list[dict]:
    return sorted(rows, key=lambda r: str(r.get("date") or r.get("calendarYear") or ""), reverse=True)
