import logging
import structlog
import sys
from pathlib import Path

from .config import Settings, settings

# Third-party loggers and the level they are held at regardless of LOG_LEVEL.
# yfinance logs every failed ticker at ERROR and httpx logs each request at
# INFO; the sync events already carry both outcomes.
QUIET_LOGGERS = {
    "yfinance": logging.CRITICAL,
    "yahooquery": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
}

def setup_logging(cfg: Settings | None = None, stream=None):
    cfg = cfg or settings
    log_level = getattr(logging, (cfg.log_level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter("%(message)s")
    # Batch output goes to stderr so CLI summaries on stdout stay readable.
    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    error_log_path = (cfg.log_error_file or "").strip()
    if error_log_path:
        Path(error_log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(error_log_path)
        file_handler.setLevel(logging.ERROR)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).setLevel(log_level)
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, log_level))
