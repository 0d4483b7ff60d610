import sqlite3
import time
from dataclasses import dataclass

from .config import Settings, settings as default_settings
from .db import get_conn, migrate, seed_defaults
from .pipeline.freshness import FreshnessPolicy
from .pipeline.orchestrator import FetchOrchestrator
from .pipeline.router import ProviderRouter
from .pipeline.usage import UsageTracker
from .providers.registry import ClientRegistry, default_registry
from .safety.cache import SafetyCache
from .safety.financials import FinancialDataSource
from .utils import Clock, SystemClock


@dataclass
class Runtime:
    conn: sqlite3.Connection
    settings: Settings
    clock: Clock
    registry: ClientRegistry
    usage: UsageTracker
    router: ProviderRouter
    freshness: FreshnessPolicy
    orchestrator: FetchOrchestrator
    safety_cache: SafetyCache

    def close(self):
        self.registry.close()
        self.conn.close()


def build_runtime(
    cfg: Settings | None = None,
    conn: sqlite3.Connection | None = None,
    clock: Clock | None = None,
    registry: ClientRegistry | None = None,
    sleep=time.sleep,
) -> Runtime:
    """Wire every component from one Settings object and one connection."""
    cfg = cfg or default_settings
    clock = clock or SystemClock()
    if conn is None:
        conn = get_conn(cfg.db_path)
    migrate(conn)
    seed_defaults(conn)
    registry = registry or default_registry(conn, cfg)
    usage = UsageTracker(conn, clock=clock, usage_tz=cfg.provider_usage_tz)
    router = ProviderRouter(conn, registry, usage)
    freshness = FreshnessPolicy.from_settings(cfg, clock=clock)
    orchestrator = FetchOrchestrator(
        conn,
        router,
        usage,
        freshness,
        clock=clock,
        request_delay_seconds=cfg.request_delay_seconds,
        historical_days=cfg.historical_data_days,
        sleep=sleep,
    )
    source = FinancialDataSource(
        conn,
        router,
        usage,
        lookback_years=cfg.safety_lookback_years,
        request_delay_seconds=cfg.request_delay_seconds,
        sleep=sleep,
    )
    safety_cache = SafetyCache(
        conn,
        source,
        clock=clock,
        ttl_hours=cfg.safety_cache_ttl_hours,
        retention_days=cfg.safety_cache_retention_days,
        market_timezone=cfg.market_timezone,
    )
    return Runtime(
        conn=conn,
        settings=cfg,
        clock=clock,
        registry=registry,
        usage=usage,
        router=router,
        freshness=freshness,
        orchestrator=orchestrator,
        safety_cache=safety_cache,
    )
