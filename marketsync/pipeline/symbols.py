import sqlite3

from ..storage.holdings import held_symbols


def normalize_symbols(symbols) -> list[str]:
    """Upper-case, strip, de-duplicate and sort a caller-provided symbol list."""
    out = set()
    for sym in symbols or []:
        text = str(sym or "").strip().upper()
        if text:
            out.add(text)
    return sorted(out)


def resolve_symbols(conn: sqlite3.Connection, symbols=None) -> list[str]:
    """The working set: an explicit list when given, otherwise everything currently held."""
    if symbols is not None:
        return normalize_symbols(symbols)
    return held_symbols(conn)
