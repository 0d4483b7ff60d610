import uuid
from contextlib import contextmanager

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from .schemas import SyncRun, FreshnessResponse, SafetyResponse, PortfolioSafetyRequest, ProviderUsage
from ..config import settings
from ..models import Holding
from ..runtime import Runtime, build_runtime
from ..safety.portfolio import get_portfolio_safety
from ..storage.providers import list_credentials

log = structlog.get_logger()
router = APIRouter()

_SYNC_KINDS = ('quotes', 'historical', 'dividends')


class RuntimeProvider:
    """Hands out a wired Runtime per unit of work; a shared one is reused and never closed."""

    def __init__(self, shared: Runtime | None = None):
        self.shared = shared

    @contextmanager
    def session(self):
        if self.shared is not None:
            yield self.shared
            return
        rt = build_runtime(settings)
        try:
            yield rt
        finally:
            rt.close()


_provider = RuntimeProvider()

def get_runtime_provider() -> RuntimeProvider:
    return _provider


def _run_sync(provider: RuntimeProvider, run_id: str, kind: str, force: bool, days: int | None):
    log.info("api_sync_started", run_id=run_id, kind=kind, force=force, days=days)
    try:
        with provider.session() as rt:
            if kind == 'quotes':
                result = rt.orchestrator.sync_quotes(force=force)
            elif kind == 'historical':
                result = rt.orchestrator.sync_historical_prices(days=days, force=force)
            else:
                result = rt.orchestrator.sync_dividends(days=days, force=force)
    except Exception as e:
        log.error("api_sync_failed", run_id=run_id, kind=kind, err=str(e))
        raise
    log.info("api_sync_finished", run_id=run_id, **result.to_dict())


@router.get(
    '/health',
    summary="Health check",
    description="Returns service and DB connectivity.",
    tags=["Health"],
)
def health(provider: RuntimeProvider = Depends(get_runtime_provider)):
    try:
        with provider.session() as rt:
            rt.conn.execute("SELECT 1").fetchone()
            session = rt.freshness.session().value
        return {'ok': True, 'db': 'ok', 'market_session': session}
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')


@router.post(
    '/sync/{kind}',
    response_model=SyncRun,
    status_code=202,
    summary="Trigger sync",
    description="Starts a quotes/historical/dividends sync for held symbols in the background.",
    tags=["Sync"],
)
def sync(kind: str, background: BackgroundTasks, force: bool = False, days: int | None = None,
         provider: RuntimeProvider = Depends(get_runtime_provider)):
    if kind not in _SYNC_KINDS:
        raise HTTPException(400, 'kind must be quotes|historical|dividends')
    if days is not None and days < 1:
        raise HTTPException(400, 'days must be >= 1')
    run_id = str(uuid.uuid4())
    background.add_task(_run_sync, provider, run_id, kind, force, days)
    return SyncRun(run_id=run_id, kind=kind, force=force, days=days)


@router.get(
    '/freshness',
    response_model=FreshnessResponse,
    summary="Quote freshness",
    description="Fresh/stale/missing quote counts over held symbols.",
    tags=["Sync"],
)
def freshness(provider: RuntimeProvider = Depends(get_runtime_provider)):
    with provider.session() as rt:
        return FreshnessResponse(**rt.orchestrator.get_freshness_stats().to_dict())


@router.get(
    '/safety/{symbol}',
    response_model=SafetyResponse,
    summary="Dividend safety score",
    description="Cached score when fresh, otherwise recomputed and cached.",
    tags=["Safety"],
)
def safety(symbol: str, provider: RuntimeProvider = Depends(get_runtime_provider)):
    symbol = symbol.strip().upper()
    if not symbol:
        raise HTTPException(400, 'symbol required')
    with provider.session() as rt:
        result = rt.safety_cache.get_safety_score(symbol)
    return SafetyResponse(symbol=symbol, **result.to_dict())


@router.post(
    '/safety/portfolio',
    summary="Portfolio dividend safety",
    description="Value-weighted safety, risk distribution, income at risk and recommendations.",
    tags=["Safety"],
)
def portfolio_safety(req: PortfolioSafetyRequest, provider: RuntimeProvider = Depends(get_runtime_provider)):
    if not req.symbols and not req.holdings:
        raise HTTPException(400, 'symbols or holdings required')
    holdings = None
    if req.holdings:
        holdings = [Holding(symbol=h.symbol.strip().upper(), quantity=h.quantity, avg_cost_basis=h.avg_cost_basis) for h in req.holdings]
    with provider.session() as rt:
        return get_portfolio_safety(
            rt.conn,
            rt.safety_cache,
            as_of=rt.freshness.market_date(),
            symbols=req.symbols,
            holdings=holdings,
        )


@router.get(
    '/providers/usage',
    response_model=list[ProviderUsage],
    summary="Provider quota usage",
    description="Daily usage and remaining quota per configured provider.",
    tags=["Admin"],
)
def providers_usage(provider: RuntimeProvider = Depends(get_runtime_provider)):
    with provider.session() as rt:
        return [ProviderUsage(**rt.usage.usage_stats(cred.provider)) for cred in list_credentials(rt.conn)]
