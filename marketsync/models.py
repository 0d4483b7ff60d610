from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class DataType(str, Enum):
    STOCK_QUOTES = "stock_quotes"
    HISTORICAL_PRICES = "historical_prices"
    DIVIDEND_DATA = "dividend_data"
    COMPANY_PROFILES = "company_profiles"
    FINANCIAL_STATEMENTS = "financial_statements"
    ANALYST_ESTIMATES = "analyst_estimates"
    INSIDER_TRADING = "insider_trading"
    INSTITUTIONAL_HOLDINGS = "institutional_holdings"


class MarketState(str, Enum):
    PRE = "PRE"
    REGULAR = "REGULAR"
    POST = "POST"
    CLOSED = "CLOSED"

    @classmethod
    def normalize(cls, raw) -> "MarketState":
        text = str(raw or "").strip().upper()
        if text in ("PRE", "PREPRE"):
            return cls.PRE
        if text in ("REGULAR", "OPEN"):
            return cls.REGULAR
        if text in ("POST", "POSTPOST"):
            return cls.POST
        return cls.CLOSED


class DividendType(str, Enum):
    REGULAR = "regular"
    SPECIAL = "special"
    STOCK = "stock"


class Outcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Quote:
    symbol: str
    current_price: float
    quote_time: datetime
    change: float = 0.0
    change_percent: float = 0.0
    volume: int | None = None
    market_cap: int | None = None
    fifty_two_week_high: float | None = None
    fifty_two_week_low: float | None = None
    market_state: MarketState = MarketState.CLOSED
    name: str | None = None
    exchange: str | None = None
    currency: str | None = None
    provider: str | None = None
    fetched_at: datetime | None = None


@dataclass
class PriceBar:
    symbol: str
    date: date
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    adjusted_close: float | None = None
    volume: int | None = None
    provider: str | None = None


@dataclass
class DividendEvent:
    symbol: str
    ex_date: date
    amount: float
    payment_date: date | None = None
    record_date: date | None = None
    declaration_date: date | None = None
    currency: str = "USD"
    dividend_type: DividendType = DividendType.REGULAR
    provider: str | None = None


@dataclass
class ProviderCredential:
    provider: str
    api_key: str = ""
    is_active: bool = True
    rate_limit_per_minute: int | None = None
    rate_limit_per_day: int | None = None
    usage_count_today: int = 0
    usage_reset_date: date | None = None
    last_used: datetime | None = None
    notes: str | None = None

    def is_usable(self) -> bool:
        return bool(self.is_active) and bool((self.api_key or "").strip())


@dataclass
class ProviderConfig:
    data_type: DataType
    primary_provider: str
    fallback_provider: str | None = None
    is_active: bool = True
    config_options: dict = field(default_factory=dict)
    notes: str | None = None


@dataclass
class SyncState:
    symbol: str
    data_type: DataType
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_provider: str | None = None
    window_days: int | None = None
    last_error: str | None = None


@dataclass
class SymbolOutcome:
    symbol: str
    outcome: Outcome
    provider: str | None = None
    error: str | None = None


@dataclass
class BatchResult:
    data_type: DataType
    total: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    outcomes: list[SymbolOutcome] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def record(self, item: SymbolOutcome):
        self.outcomes.append(item)
        if item.outcome == Outcome.UPDATED:
            self.updated += 1
        elif item.outcome == Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            if item.error:
                self.errors.append(item.error)

    def to_dict(self) -> dict:
        return {
            "data_type": self.data_type.value,
            "total": self.total,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class FreshnessStats:
    total_stocks: int = 0
    fresh_data: int = 0
    stale_data: int = 0
    missing_data: int = 0
    oldest_data_timestamp: datetime | None = None
    newest_data_timestamp: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "total_stocks": self.total_stocks,
            "fresh_data": self.fresh_data,
            "stale_data": self.stale_data,
            "missing_data": self.missing_data,
            "oldest_data_timestamp": self.oldest_data_timestamp.isoformat() if self.oldest_data_timestamp else None,
            "newest_data_timestamp": self.newest_data_timestamp.isoformat() if self.newest_data_timestamp else None,
        }


# Financial statement inputs for dividend safety scoring. Values are in the
# reporting currency; `dividends_paid` may be reported negative (cash outflow).

@dataclass(frozen=True)
class IncomeStatement:
    period: str
    net_income: float | None = None
    eps: float | None = None


@dataclass(frozen=True)
class BalanceSheet:
    period: str
    total_debt: float | None = None
    shareholder_equity: float | None = None


@dataclass(frozen=True)
class CashFlowStatement:
    period: str
    free_cash_flow: float | None = None
    dividends_paid: float | None = None


@dataclass(frozen=True)
class DividendPeriod:
    period: str
    per_share: float


@dataclass(frozen=True)
class FinancialData:
    """Most-recent-first statement series for one symbol."""

    income_statements: tuple[IncomeStatement, ...] = ()
    balance_sheets: tuple[BalanceSheet, ...] = ()
    cash_flow_statements: tuple[CashFlowStatement, ...] = ()
    dividend_history: tuple[DividendPeriod, ...] = ()

    def is_empty(self) -> bool:
        return not (self.income_statements or self.balance_sheets or self.cash_flow_statements or self.dividend_history)


@dataclass(frozen=True)
class FactorScore:
    name: str
    value: float | None
    score: int
    weight: float
    description: str

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "score": self.score,
            "weight": self.weight,
            "description": self.description,
        }


@dataclass(frozen=True)
class SafetyResult:
    score: int
    grade: str
    factors: dict[str, FactorScore] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    last_updated: datetime | None = None
    is_cached: bool = False

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "grade": self.grade,
            "factors": {name: f.to_dict() for name, f in self.factors.items()},
            "warnings": list(self.warnings),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "is_cached": self.is_cached,
        }


@dataclass
class SafetyCacheEntry:
    symbol: str
    score: int
    grade: str
    factor_scores: dict[str, int] = field(default_factory=dict)
    factor_values: dict[str, float | None] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    last_updated: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Holding:
    symbol: str
    quantity: float
    avg_cost_basis: float = 0.0
    portfolio_id: int | None = None

    @property
    def cost_value(self) -> float:
        return self.quantity * self.avg_cost_basis


@dataclass
class Transaction:
    id: int
    symbol: str
    transaction_type: str
    quantity: float
    price: float
    transaction_date: date
    fees: float = 0.0
