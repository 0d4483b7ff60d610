import json
import sqlite3
from datetime import datetime, date

from ..models import DataType, ProviderConfig, ProviderCredential
from ..utils import parse_date, parse_iso, to_iso

_CRED_COLS = (
    "provider, api_key, is_active, rate_limit_per_minute, rate_limit_per_day, "
    "usage_count_today, usage_reset_date, last_used_utc, notes"
)


def _row_to_credential(row) -> ProviderCredential:
    return ProviderCredential(
        provider=row[0],
        api_key=row[1] or "",
        is_active=bool(row[2]),
        rate_limit_per_minute=row[3],
        rate_limit_per_day=row[4],
        usage_count_today=row[5] or 0,
        usage_reset_date=parse_date(row[6]),
        last_used=parse_iso(row[7]),
        notes=row[8],
    )


def get_credential(conn: sqlite3.Connection, provider: str) -> ProviderCredential | None:
    row = conn.execute(f"SELECT {_CRED_COLS} FROM api_keys WHERE provider = ?", (provider,)).fetchone()
    return _row_to_credential(row) if row else None


def list_credentials(conn: sqlite3.Connection) -> list[ProviderCredential]:
    rows = conn.execute(f"SELECT {_CRED_COLS} FROM api_keys ORDER BY provider").fetchall()
    return [_row_to_credential(r) for r in rows]


def set_credential(conn: sqlite3.Connection, provider: str, api_key: str, is_active: bool = True,
                   per_minute: int | None = None, per_day: int | None = None):
    conn.execute(
        """
        INSERT INTO api_keys (provider, api_key, is_active, rate_limit_per_minute, rate_limit_per_day)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(provider) DO UPDATE SET
          api_key = excluded.api_key,
          is_active = excluded.is_active,
          rate_limit_per_minute = COALESCE(excluded.rate_limit_per_minute, api_keys.rate_limit_per_minute),
          rate_limit_per_day = COALESCE(excluded.rate_limit_per_day, api_keys.rate_limit_per_day)
        """,
        (provider, api_key or "", 1 if is_active else 0, per_minute, per_day),
    )


def write_usage(conn: sqlite3.Connection, provider: str, count: int, reset_date: date, last_used: datetime | None = None):
    if last_used is None:
        conn.execute(
            "UPDATE api_keys SET usage_count_today = ?, usage_reset_date = ? WHERE provider = ?",
            (count, reset_date.isoformat(), provider),
        )
    else:
        conn.execute(
            "UPDATE api_keys SET usage_count_today = ?, usage_reset_date = ?, last_used_utc = ? WHERE provider = ?",
            (count, reset_date.isoformat(), to_iso(last_used), provider),
        )


def _row_to_config(row) -> ProviderConfig:
    try:
        options = json.loads(row[4]) if row[4] else {}
    except json.JSONDecodeError:
        options = {}
    return ProviderConfig(
        data_type=DataType(row[0]),
        primary_provider=row[1],
        fallback_provider=row[2] or None,
        is_active=bool(row[3]),
        config_options=options if isinstance(options, dict) else {},
        notes=row[5],
    )


def get_provider_config(conn: sqlite3.Connection, data_type: DataType) -> ProviderConfig | None:
    row = conn.execute(
        """
        SELECT data_type, primary_provider, fallback_provider, is_active, config_options, notes
        FROM data_provider_config WHERE data_type = ?
        """,
        (DataType(data_type).value,),
    ).fetchone()
    return _row_to_config(row) if row else None


def list_provider_configs(conn: sqlite3.Connection) -> list[ProviderConfig]:
    rows = conn.execute(
        """
        SELECT data_type, primary_provider, fallback_provider, is_active, config_options, notes
        FROM data_provider_config ORDER BY data_type
        """
    ).fetchall()
    out = []
    for row in rows:
        try:
            out.append(_row_to_config(row))
        except ValueError:
            # Unknown data_type rows are ignored.
            continue
    return out
