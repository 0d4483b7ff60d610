#!/usr/bin/env python3
"""
Dividend safety cache management.

Usage:
    python scripts/dividend_safety_cache.py update              # Stale entries for held stocks
    python scripts/dividend_safety_cache.py stats
    python scripts/dividend_safety_cache.py cleanup             # Entries older than 30 days
    python scripts/dividend_safety_cache.py refresh AAPL,MSFT,JNJ
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from marketsync.cli import safety_cache_main
from marketsync.logging import setup_logging

if __name__ == '__main__':
    setup_logging()
    sys.exit(safety_cache_main(sys.argv[1:]))
