from __future__ import annotations
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.combining import OrTrigger
from zoneinfo import ZoneInfo
import structlog

from .config import settings
from .pipeline.symbols import resolve_symbols
from .runtime import build_runtime

_log = structlog.get_logger()
_scheduler: BackgroundScheduler | None = None

# Same job never overlaps itself; on-demand runs are not coordinated with these.
_JOB_DEFAULTS = {"max_instances": 1, "coalesce": True, "misfire_grace_time": 300}

def get_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone=ZoneInfo(settings.market_timezone), job_defaults=_JOB_DEFAULTS)
    return _scheduler

def schedule_jobs(sched: BackgroundScheduler | None = None, start: bool = True) -> BackgroundScheduler:
    sched = sched or get_scheduler()
    tz = ZoneInfo(settings.market_timezone)
    # Quotes every 15 minutes through the trading day
    sched.add_job(run_quotes, CronTrigger(day_of_week="mon-fri", hour="9-16", minute="*/15", timezone=tz), id="sync_quotes", replace_existing=True, **_JOB_DEFAULTS)
    # Quotes every 30 minutes outside it, weekends included; freshness decides whether anything is fetched
    after_hours = OrTrigger([
        CronTrigger(day_of_week="mon-fri", hour="0-8,17-23", minute="*/30", timezone=tz),
        CronTrigger(day_of_week="sat,sun", minute="*/30", timezone=tz),
    ])
    sched.add_job(run_quotes, after_hours, id="sync_quotes_after_hours", replace_existing=True, **_JOB_DEFAULTS)
    # Daily bars after the close
    sched.add_job(run_historical, CronTrigger(day_of_week="mon-fri", hour=17, minute=30, timezone=tz), id="sync_historical", replace_existing=True, **_JOB_DEFAULTS)
    # Dividends once a day
    sched.add_job(run_dividends, CronTrigger(hour=18, minute=0, timezone=tz), id="sync_dividends", replace_existing=True, **_JOB_DEFAULTS)
    # Safety scores after dividends land
    sched.add_job(run_safety_update, CronTrigger(hour=19, minute=0, timezone=tz), id="safety_update", replace_existing=True, **_JOB_DEFAULTS)
    # Weekly cache cleanup
    sched.add_job(run_safety_cleanup, CronTrigger(day_of_week="sun", hour=3, minute=0, timezone=tz), id="safety_cleanup", replace_existing=True, **_JOB_DEFAULTS)
    if start:
        sched.start()
        _log.info("scheduler_started", jobs=[job.id for job in sched.get_jobs()])
    return sched

def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None

def run_quotes():
    rt = build_runtime(settings)
    try:
        result = rt.orchestrator.sync_quotes()
        _log.info("scheduled_sync_done", job="sync_quotes", **result.to_dict())
    finally:
        rt.close()

def run_historical():
    rt = build_runtime(settings)
    try:
        result = rt.orchestrator.sync_historical_prices()
        _log.info("scheduled_sync_done", job="sync_historical", **result.to_dict())
    finally:
        rt.close()

def run_dividends():
    rt = build_runtime(settings)
    try:
        result = rt.orchestrator.sync_dividends()
        _log.info("scheduled_sync_done", job="sync_dividends", **result.to_dict())
    finally:
        rt.close()

def run_safety_update():
    rt = build_runtime(settings)
    try:
        pending = rt.safety_cache.symbols_needing_update(resolve_symbols(rt.conn))
        results = rt.safety_cache.bulk_update(pending)
        _log.info("safety_update_done", updated=len(results))
    finally:
        rt.close()

def run_safety_cleanup():
    rt = build_runtime(settings)
    try:
        rt.safety_cache.cleanup()
    finally:
        rt.close()
