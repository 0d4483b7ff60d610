from datetime import date, timedelta

import pandas as pd
import yfinance as yf

from ..errors import MalformedResponseError
from ..models import DividendEvent, PriceBar, Quote
from .common import YAHOO_CAPABILITIES, ProviderClient, build_quote, frame_to_bars, normalize_prices, series_to_dividends


class YFinanceAdapter(ProviderClient):
    name = "yahoo_finance"
    capabilities = YAHOO_CAPABILITIES

    def __init__(self, yf_module=None):
        super().__init__()
        self.yf = yf_module or yf

    def fetch_quote(self, symbol: str) -> Quote:
        try:
            info = self.yf.Ticker(symbol).get_info()
        except Exception as exc:
            raise self.wrap_error(exc, f"quote {symbol}") from exc
        self.requests_made += 1
        if not isinstance(info, dict) or not info:
            raise MalformedResponseError(self.name, f"empty quote payload for {symbol}")
        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("currentPrice")
        prev = info.get("regularMarketPreviousClose")
        if prev is None:
            prev = info.get("previousClose")
        return build_quote(
            self.name,
            symbol,
            price,
            prev,
            info.get("regularMarketTime"),
            volume=info.get("regularMarketVolume") or info.get("volume"),
            market_cap=info.get("marketCap"),
            high_52w=info.get("fiftyTwoWeekHigh"),
            low_52w=info.get("fiftyTwoWeekLow"),
            market_state=info.get("marketState"),
            name=info.get("longName") or info.get("shortName"),
            exchange=info.get("exchange"),
            currency=info.get("currency"),
        )

    def fetch_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        try:
            # yfinance treats `end` as exclusive.
            df = self.yf.download(
                symbol,
                start=start.isoformat(),
                end=(end + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
                progress=False,
            )
        except Exception as exc:
            raise self.wrap_error(exc, f"history {symbol}") from exc
        self.requests_made += 1
        if not isinstance(df, pd.DataFrame):
            raise MalformedResponseError(self.name, f"unexpected history payload for {symbol}")
        if df.empty:
            return []
        if isinstance(df.columns, pd.MultiIndex):
            df.columns = [col[0] for col in df.columns]
        norm = normalize_prices(df.reset_index(), symbol)
        if norm is None:
            raise MalformedResponseError(self.name, f"history for {symbol} has no close column")
        return frame_to_bars(norm, symbol, self.name, start, end)

    def fetch_dividends(self, symbol: str, start: date, end: date) -> list[DividendEvent]:
        try:
            dv = self.yf.Ticker(symbol).dividends
        except Exception as exc:
            raise self.wrap_error(exc, f"dividends {symbol}") from exc
        self.requests_made += 1
        if isinstance(dv, pd.DataFrame):
            if dv.empty:
                return []
            dv = dv.iloc[:, 0]
        if not isinstance(dv, pd.Series):
            raise MalformedResponseError(self.name, f"unexpected dividends payload for {symbol}")
        return series_to_dividends(dv, symbol, self.name, start, end)
