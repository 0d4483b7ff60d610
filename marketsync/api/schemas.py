from pydantic import BaseModel, Field
from typing import Optional, Literal

class SyncRun(BaseModel):
    run_id: str
    kind: Literal['quotes','historical','dividends']
    force: bool = False
    days: Optional[int] = None

class FreshnessResponse(BaseModel):
    total_stocks: int
    fresh_data: int
    stale_data: int
    missing_data: int
    oldest_data_timestamp: Optional[str] = None
    newest_data_timestamp: Optional[str] = None

class FactorOut(BaseModel):
    value: Optional[float] = None
    score: int
    weight: float
    description: str

class SafetyResponse(BaseModel):
    symbol: str
    score: int
    grade: str
    factors: dict[str, FactorOut] = {}
    warnings: list[str] = []
    last_updated: Optional[str] = None
    is_cached: bool = False

class HoldingIn(BaseModel):
    symbol: str
    quantity: float = Field(gt=0)
    avg_cost_basis: float = Field(default=0.0, ge=0)

class PortfolioSafetyRequest(BaseModel):
    symbols: Optional[list[str]] = None
    holdings: Optional[list[HoldingIn]] = None

class ProviderUsage(BaseModel):
    provider: str
    available: bool
    daily_limit: Optional[int] = None
    usage_today: Optional[int] = None
    remaining: Optional[int] = None
    usage_percentage: Optional[float] = None
    last_used: Optional[str] = None
