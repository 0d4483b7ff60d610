import json
import sqlite3
from datetime import datetime

from ..models import SafetyCacheEntry
from ..utils import parse_iso, to_iso

FACTOR_NAMES = ("payout_ratio", "fcf_coverage", "debt_to_equity", "dividend_growth", "earnings_stability")

_COLS = (
    ["symbol", "score", "grade"]
    + [f"{name}_score" for name in FACTOR_NAMES]
    + list(FACTOR_NAMES)
    + ["warnings", "last_updated_utc", "created_at_utc"]
)


def _row_to_entry(row) -> SafetyCacheEntry:
    n = len(FACTOR_NAMES)
    scores = {name: row[3 + i] for i, name in enumerate(FACTOR_NAMES)}
    values = {name: row[3 + n + i] for i, name in enumerate(FACTOR_NAMES)}
    try:
        warnings = json.loads(row[3 + 2 * n] or "[]")
    except json.JSONDecodeError:
        warnings = []
    return SafetyCacheEntry(
        symbol=row[0],
        score=int(row[1]),
        grade=row[2],
        factor_scores={k: int(v) for k, v in scores.items() if v is not None},
        factor_values=values,
        warnings=[str(w) for w in warnings] if isinstance(warnings, list) else [],
        last_updated=parse_iso(row[4 + 2 * n]),
        created_at=parse_iso(row[5 + 2 * n]),
    )


def get_entry(conn: sqlite3.Connection, symbol: str) -> SafetyCacheEntry | None:
    row = conn.execute(
        f"SELECT {', '.join(_COLS)} FROM dividend_safety_cache WHERE symbol = ?",
        (symbol,),
    ).fetchone()
    return _row_to_entry(row) if row else None


def list_entries(conn: sqlite3.Connection) -> list[SafetyCacheEntry]:
    rows = conn.execute(f"SELECT {', '.join(_COLS)} FROM dividend_safety_cache ORDER BY symbol").fetchall()
    return [_row_to_entry(r) for r in rows]


def put_entry(conn: sqlite3.Connection, entry: SafetyCacheEntry):
    values = [entry.symbol, int(entry.score), entry.grade]
    values += [entry.factor_scores.get(name) for name in FACTOR_NAMES]
    values += [entry.factor_values.get(name) for name in FACTOR_NAMES]
    values += [
        json.dumps(list(entry.warnings)),
        to_iso(entry.last_updated),
        to_iso(entry.created_at or entry.last_updated),
    ]
    updates = ", ".join(f"{col} = excluded.{col}" for col in _COLS[1:-1])
    conn.execute(
        f"""
        INSERT INTO dividend_safety_cache ({', '.join(_COLS)})
        VALUES ({', '.join('?' for _ in _COLS)})
        ON CONFLICT(symbol) DO UPDATE SET {updates}
        """,
        values,
    )


def delete_older_than(conn: sqlite3.Connection, cutoff: datetime) -> int:
    cur = conn.execute(
        "DELETE FROM dividend_safety_cache WHERE last_updated_utc < ?",
        (to_iso(cutoff),),
    )
    return cur.rowcount
