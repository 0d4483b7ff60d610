#!/usr/bin/env python3
"""
Fetch fresh market data for every stock currently held in a portfolio.
Designed to run from cron; exits 1 when any symbol failed.

Usage:
    python scripts/fetch_stock_data.py                    # Quotes (skips fresh symbols)
    python scripts/fetch_stock_data.py --force            # Quotes, ignoring freshness
    python scripts/fetch_stock_data.py --stats            # Print freshness stats first
    python scripts/fetch_stock_data.py --historical --days=90
    python scripts/fetch_stock_data.py --dividends
"""
from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from marketsync.cli import fetch_main
from marketsync.logging import setup_logging

if __name__ == '__main__':
    setup_logging()
    sys.exit(fetch_main(sys.argv[1:]))
