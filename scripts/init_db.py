from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from marketsync.db import init_db
from marketsync.config import settings
from marketsync.storage.providers import list_credentials, list_provider_configs

if __name__ == '__main__':
    conn = init_db(settings.db_path)
    print('DB ready at', settings.db_path)
    for cred in list_credentials(conn):
        state = 'ready' if cred.is_usable() else 'needs key' if cred.is_active else 'inactive'
        print(f'  provider {cred.provider}: {state}, {cred.rate_limit_per_day or "unlimited"}/day')
    for cfg in list_provider_configs(conn):
        print(f'  route {cfg.data_type.value}: {cfg.primary_provider} -> {cfg.fallback_provider or "-"}')
