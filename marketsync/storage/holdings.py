import sqlite3

from ..models import Holding, Transaction
from ..utils import coerce_float, parse_date


def held_symbols(conn: sqlite3.Connection) -> list[str]:
    """Distinct upper-cased symbols with a positive active position in an active portfolio."""
    rows = conn.execute(
        """
        SELECT DISTINCT UPPER(TRIM(h.stock_symbol))
        FROM portfolio_holdings h
        JOIN portfolios p ON p.id = h.portfolio_id
        WHERE h.is_active = 1 AND p.is_active = 1 AND h.quantity > 0
          AND TRIM(COALESCE(h.stock_symbol, '')) != ''
        """
    ).fetchall()
    return sorted(r[0] for r in rows if r[0])


def list_holdings(conn: sqlite3.Connection, portfolio_id: int | None = None) -> list[Holding]:
    sql = """
        SELECT h.portfolio_id, UPPER(h.stock_symbol), h.quantity, h.avg_cost_basis
        FROM portfolio_holdings h
        JOIN portfolios p ON p.id = h.portfolio_id
        WHERE h.is_active = 1 AND p.is_active = 1 AND h.quantity > 0
    """
    params = []
    if portfolio_id is not None:
        sql += " AND h.portfolio_id = ?"
        params.append(portfolio_id)
    sql += " ORDER BY h.portfolio_id, UPPER(h.stock_symbol)"
    return [
        Holding(symbol=row[1], quantity=float(row[2] or 0.0), avg_cost_basis=float(row[3] or 0.0), portfolio_id=row[0])
        for row in conn.execute(sql, params).fetchall()
    ]


def list_transactions(conn: sqlite3.Connection, portfolio_id: int, symbol: str | None = None) -> list[Transaction]:
    sql = """
        SELECT id, UPPER(stock_symbol), transaction_type, quantity, price, fees, transaction_date
        FROM transactions WHERE portfolio_id = ?
    """
    params = [portfolio_id]
    if symbol:
        sql += " AND UPPER(stock_symbol) = ?"
        params.append(symbol.upper())
    sql += " ORDER BY transaction_date, id"
    out = []
    for row in conn.execute(sql, params).fetchall():
        tx_date = parse_date(row[6])
        if tx_date is None:
            continue
        out.append(
            Transaction(
                id=row[0],
                symbol=row[1],
                transaction_type=(row[2] or "").upper(),
                quantity=coerce_float(row[3]) or 0.0,
                price=coerce_float(row[4]) or 0.0,
                fees=coerce_float(row[5]) or 0.0,
                transaction_date=tx_date,
            )
        )
    return out


def write_holding(conn: sqlite3.Connection, portfolio_id: int, symbol: str, quantity: float, avg_cost_basis: float):
    conn.execute(
        """
        INSERT INTO portfolio_holdings (portfolio_id, stock_symbol, quantity, avg_cost_basis, is_active)
        VALUES (?, ?, ?, ?, 1)
        ON CONFLICT(portfolio_id, stock_symbol) DO UPDATE SET
          quantity = excluded.quantity,
          avg_cost_basis = excluded.avg_cost_basis,
          is_active = 1
        """,
        (portfolio_id, symbol.upper(), quantity, avg_cost_basis),
    )


def close_holdings_except(conn: sqlite3.Connection, portfolio_id: int, keep: list[str]) -> int:
    """Zero every holding of the portfolio whose symbol is not in keep."""
    keep = sorted({s.upper() for s in keep})
    sql = "UPDATE portfolio_holdings SET quantity = 0, avg_cost_basis = 0 WHERE portfolio_id = ? AND quantity != 0"
    if keep:
        sql += f" AND UPPER(stock_symbol) NOT IN ({', '.join('?' for _ in keep)})"
    return conn.execute(sql, [portfolio_id, *keep]).rowcount
