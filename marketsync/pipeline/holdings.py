import sqlite3
from collections import defaultdict

import structlog

from ..db import transaction
from ..models import Holding, Transaction
from ..storage.holdings import close_holdings_except, list_transactions, write_holding

log = structlog.get_logger()

BUY_TYPES = {"BUY", "DRIP", "REINVEST", "REINVESTMENT"}
SELL_TYPES = {"SELL", "REDEMPTION"}
STOCK_DIVIDEND_TYPES = {"STOCK_DIVIDEND"}
_EPS = 1e-9


def reconstruct_position(transactions: list[Transaction]) -> tuple[float, float]:
    """Replay one symbol's transactions and return (quantity, avg_cost_basis).

    Buys and DRIP reinvestments add shares at cost (price * quantity + fees)
    and move the weighted average. Sells remove shares at the current average,
    leaving it unchanged; a sell that empties the position resets the cost basis.
    Stock dividends add shares at zero cost. Cash dividends do not change the
    position.
    """
    quantity = 0.0
    total_cost = 0.0
    for tx in sorted(transactions, key=lambda t: (t.transaction_date, t.id)):
        kind = (tx.transaction_type or "").upper()
        qty = abs(tx.quantity or 0.0)
        if qty <= 0:
            continue
        if kind in BUY_TYPES:
            quantity += qty
            total_cost += qty * (tx.price or 0.0) + (tx.fees or 0.0)
        elif kind in STOCK_DIVIDEND_TYPES:
            quantity += qty
        elif kind in SELL_TYPES:
            avg = total_cost / quantity if quantity > _EPS else 0.0
            sold = min(qty, quantity)
            quantity -= sold
            total_cost -= avg * sold
            if quantity <= _EPS:
                quantity = 0.0
                total_cost = 0.0
    avg_cost = total_cost / quantity if quantity > _EPS else 0.0
    return quantity, avg_cost


def rebuild_holdings(conn: sqlite3.Connection, portfolio_id: int) -> list[Holding]:
    """Recompute every holding of a portfolio from its full transaction history.

    Holdings with no remaining transactions are zeroed.
    """
    by_symbol: dict[str, list[Transaction]] = defaultdict(list)
    for tx in list_transactions(conn, portfolio_id):
        by_symbol[tx.symbol].append(tx)

    out = []
    with transaction(conn, immediate=True):
        closed = close_holdings_except(conn, portfolio_id, list(by_symbol))
        for symbol in sorted(by_symbol):
            quantity, avg_cost = reconstruct_position(by_symbol[symbol])
            write_holding(conn, portfolio_id, symbol, quantity, avg_cost)
            out.append(Holding(symbol=symbol, quantity=quantity, avg_cost_basis=avg_cost, portfolio_id=portfolio_id))
    log.info("holdings_rebuilt", portfolio_id=portfolio_id, symbols_count=len(out), closed=closed)
    return out
