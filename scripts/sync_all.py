from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from marketsync.config import settings
from marketsync.logging import setup_logging
from marketsync.pipeline.symbols import resolve_symbols
from marketsync.runtime import build_runtime

if __name__ == '__main__':
    setup_logging()
    rt = build_runtime(settings)
    failed = 0
    try:
        for label, run in (
            ('quotes', rt.orchestrator.sync_quotes),
            ('historical', rt.orchestrator.sync_historical_prices),
            ('dividends', rt.orchestrator.sync_dividends),
        ):
            result = run()
            failed += result.failed
            print(f'{label}: total={result.total} updated={result.updated} skipped={result.skipped} failed={result.failed}')
        pending = rt.safety_cache.symbols_needing_update(resolve_symbols(rt.conn))
        scores = rt.safety_cache.bulk_update(pending)
        print(f'safety: refreshed={len(scores)}')
    finally:
        rt.close()
    sys.exit(1 if failed else 0)
