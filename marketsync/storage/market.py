"""Quote, price-bar, dividend and sync-state persistence.

All writes are upserts keyed by the natural key of the record; nothing here
deletes market data.
"""
import sqlite3
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from ..models import DataType, DividendEvent, DividendType, MarketState, PriceBar, Quote, SyncState
from ..utils import parse_date, parse_iso, to_iso


def ensure_stock(conn: sqlite3.Connection, symbol: str, now: datetime, name=None, exchange=None, currency=None):
    conn.execute(
        """
        INSERT OR IGNORE INTO stocks (symbol, name, exchange, currency, is_active, created_at_utc)
        VALUES (?, ?, ?, COALESCE(?, 'USD'), 1, ?)
        """,
        (symbol, name, exchange, currency, to_iso(now)),
    )
    if name or exchange:
        conn.execute(
            """
            UPDATE stocks SET
              name = COALESCE(name, ?),
              exchange = COALESCE(exchange, ?)
            WHERE symbol = ?
            """,
            (name, exchange, symbol),
        )


def save_quote(conn: sqlite3.Connection, quote: Quote, fetched_at: datetime) -> bool:
    """Upsert the latest quote. Returns False when the stored quote is newer.

    An older incoming quote leaves price fields untouched but still advances
    `fetched_at_utc`.
    """
    cur = conn.cursor()
    ensure_stock(conn, quote.symbol, fetched_at, quote.name, quote.exchange, quote.currency)
    cur.execute(
        """
        INSERT INTO stock_quotes (
          symbol, current_price, change, change_percent, volume, market_cap,
          fifty_two_week_high, fifty_two_week_low, quote_time, market_state,
          provider, fetched_at_utc
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(symbol) DO UPDATE SET
          current_price = excluded.current_price,
          change = excluded.change,
          change_percent = excluded.change_percent,
          volume = excluded.volume,
          market_cap = excluded.market_cap,
          fifty_two_week_high = excluded.fifty_two_week_high,
          fifty_two_week_low = excluded.fifty_two_week_low,
          quote_time = excluded.quote_time,
          market_state = excluded.market_state,
          provider = excluded.provider,
          fetched_at_utc = excluded.fetched_at_utc
        WHERE excluded.quote_time >= stock_quotes.quote_time
        """,
        (
            quote.symbol,
            quote.current_price,
            quote.change,
            quote.change_percent,
            quote.volume,
            quote.market_cap,
            quote.fifty_two_week_high,
            quote.fifty_two_week_low,
            to_iso(quote.quote_time),
            MarketState(quote.market_state).value,
            quote.provider,
            to_iso(fetched_at),
        ),
    )
    applied = cur.rowcount > 0
    if not applied:
        cur.execute(
            "UPDATE stock_quotes SET fetched_at_utc = ? WHERE symbol = ?",
            (to_iso(fetched_at), quote.symbol),
        )
    return applied


_QUOTE_COLS = (
    "symbol, current_price, change, change_percent, volume, market_cap, "
    "fifty_two_week_high, fifty_two_week_low, quote_time, market_state, provider, fetched_at_utc"
)


def _row_to_quote(row) -> Quote:
    return Quote(
        symbol=row[0],
        current_price=row[1],
        change=row[2] or 0.0,
        change_percent=row[3] or 0.0,
        volume=row[4],
        market_cap=row[5],
        fifty_two_week_high=row[6],
        fifty_two_week_low=row[7],
        quote_time=parse_iso(row[8]),
        market_state=MarketState.normalize(row[9]),
        provider=row[10],
        fetched_at=parse_iso(row[11]),
    )


def get_quote(conn: sqlite3.Connection, symbol: str) -> Quote | None:
    row = conn.execute(f"SELECT {_QUOTE_COLS} FROM stock_quotes WHERE symbol = ?", (symbol,)).fetchone()
    return _row_to_quote(row) if row else None


def get_quotes(conn: sqlite3.Connection, symbols: list[str]) -> dict[str, Quote]:
    if not symbols:
        return {}
    placeholders = ",".join("?" for _ in symbols)
    rows = conn.execute(
        f"SELECT {_QUOTE_COLS} FROM stock_quotes WHERE symbol IN ({placeholders})",
        tuple(symbols),
    ).fetchall()
    return {row[0]: _row_to_quote(row) for row in rows}


def save_price_bars(conn: sqlite3.Connection, symbol: str, bars: list[PriceBar], now: datetime) -> int:
    if not bars:
        return 0
    ensure_stock(conn, symbol, now)
    updated_at = to_iso(now)
    rows = [
        (
            symbol,
            bar.date.isoformat(),
            bar.open,
            bar.high,
            bar.low,
            bar.close,
            bar.adjusted_close,
            bar.volume,
            bar.provider,
            updated_at,
        )
        for bar in bars
    ]
    conn.executemany(
        """
        INSERT INTO stock_prices (symbol, date, open, high, low, close, adjusted_close, volume, provider, updated_at_utc)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(symbol, date) DO UPDATE SET
          open = excluded.open,
          high = excluded.high,
          low = excluded.low,
          close = excluded.close,
          adjusted_close = excluded.adjusted_close,
          volume = excluded.volume,
          provider = excluded.provider,
          updated_at_utc = excluded.updated_at_utc
        """,
        rows,
    )
    return len(rows)


def get_price_bars(conn: sqlite3.Connection, symbol: str, start: date | None = None, end: date | None = None) -> list[PriceBar]:
    sql = "SELECT symbol, date, open, high, low, close, adjusted_close, volume, provider FROM stock_prices WHERE symbol = ?"
    params = [symbol]
    if start:
        sql += " AND date >= ?"
        params.append(start.isoformat())
    if end:
        sql += " AND date <= ?"
        params.append(end.isoformat())
    sql += " ORDER BY date"
    return [
        PriceBar(
            symbol=row[0],
            date=parse_date(row[1]),
            open=row[2],
            high=row[3],
            low=row[4],
            close=row[5],
            adjusted_close=row[6],
            volume=row[7],
            provider=row[8],
        )
        for row in conn.execute(sql, params).fetchall()
    ]


def save_dividends(conn: sqlite3.Connection, symbol: str, events: list[DividendEvent], now: datetime) -> int:
    if not events:
        return 0
    ensure_stock(conn, symbol, now)
    updated_at = to_iso(now)
    rows = []
    for ev in events:
        rows.append(
            (
                symbol,
                ev.ex_date.isoformat(),
                ev.amount,
                ev.payment_date.isoformat() if ev.payment_date else None,
                ev.record_date.isoformat() if ev.record_date else None,
                ev.declaration_date.isoformat() if ev.declaration_date else None,
                ev.currency or "USD",
                DividendType(ev.dividend_type).value,
                ev.provider,
                updated_at,
            )
        )
    # Provider-reported dates only overwrite when present.
    conn.executemany(
        """
        INSERT INTO dividends (
          symbol, ex_date, amount, payment_date, record_date, declaration_date,
          currency, dividend_type, provider, updated_at_utc
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(symbol, ex_date) DO UPDATE SET
          amount = excluded.amount,
          payment_date = COALESCE(excluded.payment_date, dividends.payment_date),
          record_date = COALESCE(excluded.record_date, dividends.record_date),
          declaration_date = COALESCE(excluded.declaration_date, dividends.declaration_date),
          currency = excluded.currency,
          dividend_type = excluded.dividend_type,
          provider = excluded.provider,
          updated_at_utc = excluded.updated_at_utc
        """,
        rows,
    )
    return len(rows)


def get_dividends(conn: sqlite3.Connection, symbol: str, since: date | None = None) -> list[DividendEvent]:
    sql = """
        SELECT symbol, ex_date, amount, payment_date, record_date, declaration_date, currency, dividend_type, provider
        FROM dividends WHERE symbol = ?
    """
    params = [symbol]
    if since:
        sql += " AND ex_date >= ?"
        params.append(since.isoformat())
    sql += " ORDER BY ex_date"
    return [
        DividendEvent(
            symbol=row[0],
            ex_date=parse_date(row[1]),
            amount=row[2],
            payment_date=parse_date(row[3]),
            record_date=parse_date(row[4]),
            declaration_date=parse_date(row[5]),
            currency=row[6] or "USD",
            dividend_type=DividendType(row[7] or "regular"),
            provider=row[8],
        )
        for row in conn.execute(sql, params).fetchall()
    ]


def trailing_dividends_per_share(conn: sqlite3.Connection, symbol: str, as_of: date, months: int = 12) -> float:
    """Sum of cash dividends with ex-date in (as_of - months, as_of], calendar months."""
    start = as_of - relativedelta(months=months)
    row = conn.execute(
        """
        SELECT COALESCE(SUM(amount), 0) FROM dividends
        WHERE symbol = ? AND ex_date > ? AND ex_date <= ? AND dividend_type != 'stock'
        """,
        (symbol, start.isoformat(), as_of.isoformat()),
    ).fetchone()
    return float(row[0] or 0.0)


def get_sync_state(conn: sqlite3.Connection, symbol: str, data_type: DataType) -> SyncState | None:
    row = conn.execute(
        """
        SELECT symbol, data_type, last_attempt_at_utc, last_success_at_utc, last_provider, window_days, last_error
        FROM sync_state WHERE symbol = ? AND data_type = ?
        """,
        (symbol, DataType(data_type).value),
    ).fetchone()
    if not row:
        return None
    return SyncState(
        symbol=row[0],
        data_type=DataType(row[1]),
        last_attempt_at=parse_iso(row[2]),
        last_success_at=parse_iso(row[3]),
        last_provider=row[4],
        window_days=row[5],
        last_error=row[6],
    )


def mark_sync_success(conn: sqlite3.Connection, symbol: str, data_type: DataType, provider: str, now: datetime, window_days: int | None = None):
    ts = to_iso(now)
    conn.execute(
        """
        INSERT INTO sync_state (symbol, data_type, last_attempt_at_utc, last_success_at_utc, last_provider, window_days, last_error)
        VALUES (?, ?, ?, ?, ?, ?, NULL)
        ON CONFLICT(symbol, data_type) DO UPDATE SET
          last_attempt_at_utc = excluded.last_attempt_at_utc,
          last_success_at_utc = excluded.last_success_at_utc,
          last_provider = excluded.last_provider,
          window_days = excluded.window_days,
          last_error = NULL
        """,
        (symbol, DataType(data_type).value, ts, ts, provider, window_days),
    )


def mark_sync_failure(conn: sqlite3.Connection, symbol: str, data_type: DataType, error: str, now: datetime):
    conn.execute(
        """
        INSERT INTO sync_state (symbol, data_type, last_attempt_at_utc, last_error)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(symbol, data_type) DO UPDATE SET
          last_attempt_at_utc = excluded.last_attempt_at_utc,
          last_error = excluded.last_error
        """,
        (symbol, DataType(data_type).value, to_iso(now), error),
    )
