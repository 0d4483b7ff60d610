from datetime import date, datetime, timezone

import pandas as pd

from ..errors import MalformedResponseError, TransportError
from ..models import DataType, DividendEvent, DividendType, FinancialData, MarketState, PriceBar, Quote
from ..utils import coerce_float, ensure_utc, parse_date

CANON_COLS = ["date", "open", "high", "low", "close", "adj_close", "volume", "symbol"]

# Data types each provider can serve, independent of credentials or quota.
YAHOO_CAPABILITIES = frozenset(
    {
        DataType.STOCK_QUOTES,
        DataType.HISTORICAL_PRICES,
        DataType.DIVIDEND_DATA,
        DataType.COMPANY_PROFILES,
    }
)
FMP_CAPABILITIES = frozenset(DataType)


class ProviderClient:
    """Common contract for market-data providers.

    Every fetch either returns normalized records or raises a ProviderError
    subclass. `requests_made` counts requests that got a response, which is
    what daily quotas are charged for.
    """

    name = ""
    capabilities = frozenset()

    def __init__(self):
        self.requests_made = 0

    def supports(self, data_type: DataType) -> bool:
        return DataType(data_type) in self.capabilities

    def fetch_quote(self, symbol: str) -> Quote:
        raise NotImplementedError

    def fetch_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        raise NotImplementedError

    def fetch_dividends(self, symbol: str, start: date, end: date) -> list[DividendEvent]:
        raise NotImplementedError

    def fetch_financials(self, symbol: str, years: int = 5) -> FinancialData:
        raise NotImplementedError

    def wrap_error(self, exc: Exception, what: str) -> TransportError:
        # OSError covers connect/DNS/timeout failures in both stdlib and requests.
        return TransportError(self.name, f"{what}: {exc}", reached_provider=not isinstance(exc, OSError))


def change_percent(price: float, previous_close: float | None) -> float:
    if not previous_close or previous_close <= 0:
        return 0.0
    return (price - previous_close) / previous_close * 100.0


def build_quote(
    provider: str,
    symbol: str,
    price,
    previous_close=None,
    quote_time=None,
    *,
    volume=None,
    market_cap=None,
    high_52w=None,
    low_52w=None,
    market_state=None,
    name=None,
    exchange=None,
    currency=None,
    fallback_time: datetime | None = None,
) -> Quote:
    """Normalize raw provider quote fields; raises MalformedResponseError without a usable price."""
    px = coerce_float(price)
    if px is None or px <= 0:
        raise MalformedResponseError(provider, f"no price for {symbol}")
    prev = coerce_float(previous_close)
    ts = parse_timestamp(quote_time) or fallback_time or datetime.now(timezone.utc)
    vol = coerce_float(volume)
    cap = coerce_float(market_cap)
    return Quote(
        symbol=symbol,
        current_price=px,
        change=px - prev if prev is not None and prev > 0 else 0.0,
        change_percent=change_percent(px, prev),
        volume=int(vol) if vol is not None else None,
        market_cap=int(cap) if cap is not None else None,
        fifty_two_week_high=coerce_float(high_52w),
        fifty_two_week_low=coerce_float(low_52w),
        quote_time=ensure_utc(ts),
        market_state=MarketState.normalize(market_state),
        name=name or None,
        exchange=exchange or None,
        currency=currency or None,
        provider=provider,
    )


def parse_timestamp(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return datetime.fromtimestamp(float(text), tz=timezone.utc)
    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def normalize_prices(df, symbol: str):
    if df is None or not isinstance(df, pd.DataFrame) or df.empty:
        return None
    d = df.copy()
    if "date" not in d.columns:
        if isinstance(d.index, pd.DatetimeIndex):
            d = d.reset_index().rename(columns={"index": "date"})
        elif "Datetime" in d.columns:
            d = d.rename(columns={"Datetime": "date"})
    rename = {
        "Date": "date",
        "Open": "open",
        "High": "high",
        "Low": "low",
        "Close": "close",
        "Adj Close": "adj_close",
        "adjclose": "adj_close",
        "adjClose": "adj_close",
        "Volume": "volume",
        "Symbol": "symbol",
    }
    d = d.rename(columns=rename)
    if "adj_close" not in d.columns and "close" in d.columns:
        d["adj_close"] = d["close"]
    if "symbol" not in d.columns:
        d["symbol"] = symbol
    keep = [c for c in CANON_COLS if c in d.columns]
    d = d[keep]
    if "date" not in d.columns or "close" not in d.columns:
        return None
    d["date"] = pd.to_datetime(d["date"], utc=True, errors="coerce").dt.date
    for c in ["open", "high", "low", "close", "adj_close"]:
        if c in d.columns:
            d[c] = pd.to_numeric(d[c], errors="coerce")
    if "volume" in d.columns:
        d["volume"] = pd.to_numeric(d["volume"], errors="coerce").fillna(0).astype("int64")
    d = d.dropna(subset=["date", "close"])
    return d.sort_values("date").drop_duplicates(subset=["date"], keep="last").reset_index(drop=True)


def frame_to_bars(df: pd.DataFrame | None, symbol: str, provider: str, start: date, end: date) -> list[PriceBar]:
    """Convert a normalized price frame into bars inside [start, end]."""
    if df is None or df.empty:
        return []
    bars = []
    for row in df.itertuples(index=False):
        day = row.date
        if day is None or day < start or day > end:
            continue
        close = coerce_float(row.close)
        if close is None:
            continue
        vol = getattr(row, "volume", None)
        bars.append(
            PriceBar(
                symbol=symbol,
                date=day,
                open=coerce_float(getattr(row, "open", None)),
                high=coerce_float(getattr(row, "high", None)),
                low=coerce_float(getattr(row, "low", None)),
                close=close,
                adjusted_close=coerce_float(getattr(row, "adj_close", None)),
                volume=int(vol) if vol is not None else None,
                provider=provider,
            )
        )
    return bars


def series_to_dividends(series, symbol: str, provider: str, start: date, end: date) -> list[DividendEvent]:
    """Ex-date indexed amounts (yfinance/yahooquery shape) to dividend events."""
    if series is None or len(series) == 0:
        return []
    events = []
    for idx, amount in series.items():
        if isinstance(idx, tuple):
            idx = idx[-1]
        ex_date = parse_date(idx.date() if hasattr(idx, "date") else idx)
        amt = coerce_float(amount)
        if ex_date is None or amt is None or amt <= 0:
            continue
        if ex_date < start or ex_date > end:
            continue
        events.append(DividendEvent(symbol=symbol, ex_date=ex_date, amount=amt, dividend_type=DividendType.REGULAR, provider=provider))
    events.sort(key=lambda e: e.ex_date)
    return events
