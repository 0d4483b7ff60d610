from datetime import date, timedelta

import pandas as pd
import yahooquery as yq

from ..errors import MalformedResponseError
from ..models import DividendEvent, PriceBar, Quote
from .common import YAHOO_CAPABILITIES, ProviderClient, build_quote, frame_to_bars, normalize_prices, series_to_dividends


class YahooQueryAdapter(ProviderClient):
    name = "yahooquery"
    capabilities = YAHOO_CAPABILITIES

    def __init__(self, yq_module=None):
        super().__init__()
        self.yq = yq_module or yq

    def _module(self, payload, symbol: str) -> dict:
        # yahooquery returns {symbol: dict} on success and {symbol: "error text"} otherwise.
        if not isinstance(payload, dict):
            raise MalformedResponseError(self.name, f"unexpected payload for {symbol}")
        item = payload.get(symbol)
        if item is None:
            item = payload.get(symbol.upper())
        if isinstance(item, str):
            raise MalformedResponseError(self.name, f"{symbol}: {item}")
        if not isinstance(item, dict):
            raise MalformedResponseError(self.name, f"missing section for {symbol}")
        return item

    def fetch_quote(self, symbol: str) -> Quote:
        try:
            t = self.yq.Ticker(symbol)
            price = t.price
            detail = t.summary_detail
        except Exception as exc:
            raise self.wrap_error(exc, f"quote {symbol}") from exc
        self.requests_made += 1
        p = self._module(price, symbol)
        try:
            d = self._module(detail, symbol)
        except MalformedResponseError:
            d = {}
        return build_quote(
            self.name,
            symbol,
            p.get("regularMarketPrice"),
            p.get("regularMarketPreviousClose"),
            p.get("regularMarketTime"),
            volume=p.get("regularMarketVolume"),
            market_cap=p.get("marketCap"),
            high_52w=d.get("fiftyTwoWeekHigh"),
            low_52w=d.get("fiftyTwoWeekLow"),
            market_state=p.get("marketState"),
            name=p.get("longName") or p.get("shortName"),
            exchange=p.get("exchange"),
            currency=p.get("currency"),
        )

    def fetch_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        try:
            df = self.yq.Ticker(symbol).history(start=start.isoformat(), end=(end + timedelta(days=1)).isoformat(), interval="1d")
        except Exception as exc:
            raise self.wrap_error(exc, f"history {symbol}") from exc
        self.requests_made += 1
        if isinstance(df, dict):
            raise MalformedResponseError(self.name, f"{symbol}: {df.get(symbol, df)}")
        if not isinstance(df, pd.DataFrame):
            raise MalformedResponseError(self.name, f"unexpected history payload for {symbol}")
        if df.empty:
            return []
        if "symbol" not in df.columns:
            df = df.reset_index()
        norm = normalize_prices(df, symbol)
        if norm is None:
            raise MalformedResponseError(self.name, f"history for {symbol} has no close column")
        return frame_to_bars(norm, symbol, self.name, start, end)

    def fetch_dividends(self, symbol: str, start: date, end: date) -> list[DividendEvent]:
        try:
            dv = self.yq.Ticker(symbol).dividend_history(start=start.isoformat(), end=end.isoformat())
        except Exception as exc:
            raise self.wrap_error(exc, f"dividends {symbol}") from exc
        self.requests_made += 1
        if isinstance(dv, pd.DataFrame):
            if dv.empty:
                return []
            col = "dividends" if "dividends" in dv.columns else dv.columns[0]
            dv = dv[col]
        elif isinstance(dv, dict):
            raise MalformedResponseError(self.name, f"{symbol}: {dv.get(symbol, dv)}")
        if not isinstance(dv, pd.Series):
            raise MalformedResponseError(self.name, f"unexpected dividends payload for {symbol}")
        return series_to_dividends(dv, symbol, self.name, start, end)
