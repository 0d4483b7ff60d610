import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)  # autocommit
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = False):
    """Explicit transaction on an autocommit connection."""
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")

DDL = [
    # Symbol registry; rows are created on first successful write.
    """
CREATE TABLE IF NOT EXISTS stocks (
  symbol TEXT PRIMARY KEY,
  name TEXT,
  exchange TEXT,
  currency TEXT DEFAULT 'USD',
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at_utc TEXT NOT NULL
);
""",

    # Latest quote, one row per symbol
    """
CREATE TABLE IF NOT EXISTS stock_quotes (
  symbol TEXT PRIMARY KEY REFERENCES stocks(symbol),
  current_price REAL NOT NULL,
  change REAL,
  change_percent REAL,
  volume INTEGER,
  market_cap INTEGER,
  fifty_two_week_high REAL,
  fifty_two_week_low REAL,
  quote_time TEXT NOT NULL,
  market_state TEXT NOT NULL DEFAULT 'CLOSED',  -- 'PRE'|'REGULAR'|'POST'|'CLOSED'
  provider TEXT,
  fetched_at_utc TEXT NOT NULL
);
""",

    # Daily bars
    """
CREATE TABLE IF NOT EXISTS stock_prices (
  symbol TEXT NOT NULL REFERENCES stocks(symbol),
  date TEXT NOT NULL,
  open REAL,
  high REAL,
  low REAL,
  close REAL NOT NULL,
  adjusted_close REAL,
  volume INTEGER,
  provider TEXT,
  updated_at_utc TEXT NOT NULL,
  PRIMARY KEY (symbol, date)
);
""",
    "CREATE INDEX IF NOT EXISTS ix_stock_prices_date ON stock_prices(date);",

    # Dividend events
    """
CREATE TABLE IF NOT EXISTS dividends (
  symbol TEXT NOT NULL REFERENCES stocks(symbol),
  ex_date TEXT NOT NULL,
  amount REAL NOT NULL,
  payment_date TEXT,
  record_date TEXT,
  declaration_date TEXT,
  currency TEXT NOT NULL DEFAULT 'USD',
  dividend_type TEXT NOT NULL DEFAULT 'regular',  -- 'regular'|'special'|'stock'
  provider TEXT,
  updated_at_utc TEXT NOT NULL,
  PRIMARY KEY (symbol, ex_date)
);
""",

    # Provider credentials and quota counters
    """
CREATE TABLE IF NOT EXISTS api_keys (
  provider TEXT PRIMARY KEY,
  api_key TEXT NOT NULL DEFAULT '',
  is_active INTEGER NOT NULL DEFAULT 1,
  rate_limit_per_minute INTEGER,
  rate_limit_per_day INTEGER,
  usage_count_today INTEGER NOT NULL DEFAULT 0,
  usage_reset_date TEXT,
  last_used_utc TEXT,
  notes TEXT
);
""",

    # Routing per data type
    """
CREATE TABLE IF NOT EXISTS data_provider_config (
  data_type TEXT PRIMARY KEY,
  primary_provider TEXT NOT NULL,
  fallback_provider TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  config_options TEXT,
  notes TEXT
);
""",

    # Per-symbol sync bookkeeping (historical/dividend freshness, last errors)
    """
CREATE TABLE IF NOT EXISTS sync_state (
  symbol TEXT NOT NULL,
  data_type TEXT NOT NULL,
  last_attempt_at_utc TEXT,
  last_success_at_utc TEXT,
  last_provider TEXT,
  window_days INTEGER,
  last_error TEXT,
  PRIMARY KEY (symbol, data_type)
);
""",

    # Dividend safety scores, shared across portfolios
    """
CREATE TABLE IF NOT EXISTS dividend_safety_cache (
  symbol TEXT PRIMARY KEY,
  score INTEGER NOT NULL,
  grade TEXT NOT NULL,
  payout_ratio_score INTEGER,
  fcf_coverage_score INTEGER,
  debt_to_equity_score INTEGER,
  dividend_growth_score INTEGER,
  earnings_stability_score INTEGER,
  payout_ratio REAL,
  fcf_coverage REAL,
  debt_to_equity REAL,
  dividend_growth REAL,
  earnings_stability REAL,
  warnings TEXT NOT NULL DEFAULT '[]',
  last_updated_utc TEXT NOT NULL,
  created_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_safety_cache_updated ON dividend_safety_cache(last_updated_utc);",

    # Portfolio tables; owned by the portfolio subsystem, read here
    """
CREATE TABLE IF NOT EXISTS portfolios (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER,
  name TEXT NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1
);
""",
    """
CREATE TABLE IF NOT EXISTS portfolio_holdings (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  portfolio_id INTEGER NOT NULL REFERENCES portfolios(id),
  stock_symbol TEXT NOT NULL,
  quantity REAL NOT NULL DEFAULT 0,
  avg_cost_basis REAL NOT NULL DEFAULT 0,
  is_active INTEGER NOT NULL DEFAULT 1,
  UNIQUE (portfolio_id, stock_symbol)
);
""",
    """
CREATE TABLE IF NOT EXISTS transactions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  portfolio_id INTEGER NOT NULL REFERENCES portfolios(id),
  stock_symbol TEXT NOT NULL,
  transaction_type TEXT NOT NULL,  -- 'BUY'|'SELL'|'DIVIDEND'|'DRIP'|'STOCK_DIVIDEND'
  quantity REAL NOT NULL DEFAULT 0,
  price REAL NOT NULL DEFAULT 0,
  fees REAL NOT NULL DEFAULT 0,
  transaction_date TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_transactions_portfolio_symbol ON transactions(portfolio_id, stock_symbol, transaction_date);",
]

# (provider, api_key, is_active, per_minute, per_day, notes)
SEED_API_KEYS = [
    ("yahoo_finance", "free", 1, 60, 2000, "Unofficial Yahoo Finance endpoints via yfinance"),
    ("yahooquery", "free", 1, 60, 2000, "Unofficial Yahoo Finance endpoints via yahooquery"),
    ("financial_modeling_prep", "", 0, 300, 10000, "Requires an API key"),
]

# (data_type, primary, fallback, notes)
SEED_PROVIDER_CONFIG = [
    ("stock_quotes", "yahoo_finance", "financial_modeling_prep", "Real-time quotes"),
    ("historical_prices", "yahoo_finance", "financial_modeling_prep", "Daily OHLCV bars"),
    ("dividend_data", "yahoo_finance", "financial_modeling_prep", "Dividend history"),
    ("company_profiles", "yahoo_finance", "financial_modeling_prep", "Company profile"),
    ("financial_statements", "financial_modeling_prep", None, "Income/balance/cash-flow statements"),
    ("analyst_estimates", "financial_modeling_prep", None, "Analyst estimates"),
    ("insider_trading", "financial_modeling_prep", None, "Insider transactions"),
    ("institutional_holdings", "financial_modeling_prep", None, "13F holdings"),
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    quote_cols = {row[1] for row in cur.execute("PRAGMA table_info(stock_quotes)").fetchall()}
    if quote_cols and "provider" not in quote_cols:
        cur.execute("ALTER TABLE stock_quotes ADD COLUMN provider TEXT")
    div_cols = {row[1] for row in cur.execute("PRAGMA table_info(dividends)").fetchall()}
    if div_cols and "declaration_date" not in div_cols:
        cur.execute("ALTER TABLE dividends ADD COLUMN declaration_date TEXT")

def seed_defaults(conn: sqlite3.Connection):
    """Insert default credentials and routing rows; existing rows are left alone."""
    cur = conn.cursor()
    for provider, key, active, per_min, per_day, notes in SEED_API_KEYS:
        cur.execute(
            """
            INSERT OR IGNORE INTO api_keys (provider, api_key, is_active, rate_limit_per_minute, rate_limit_per_day, notes)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (provider, key, active, per_min, per_day, notes),
        )
    for data_type, primary, fallback, notes in SEED_PROVIDER_CONFIG:
        cur.execute(
            """
            INSERT OR IGNORE INTO data_provider_config (data_type, primary_provider, fallback_provider, is_active, config_options, notes)
            VALUES (?, ?, ?, 1, ?, ?)
            """,
            (data_type, primary, fallback, json.dumps({}), notes),
        )

def init_db(db_path: str) -> sqlite3.Connection:
    conn = get_conn(db_path)
    migrate(conn)
    seed_defaults(conn)
    return conn
