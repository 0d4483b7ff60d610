import sqlite3

from ..config import Settings
from ..storage.providers import get_credential
from .common import ProviderClient
from .fmp_adapter import FMPAdapter
from .yahooquery_adapter import YahooQueryAdapter
from .yfinance_adapter import YFinanceAdapter


class ClientRegistry:
    """Provider name -> client instance. Unregistered providers are never routed to."""

    def __init__(self, clients=None):
        self._clients: dict[str, ProviderClient] = {}
        for client in clients or []:
            self.register(client)

    def register(self, client: ProviderClient):
        self._clients[client.name] = client

    def get(self, name: str | None) -> ProviderClient | None:
        if not name:
            return None
        return self._clients.get(name)

    def close(self):
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close:
                close()


def default_registry(conn: sqlite3.Connection, cfg: Settings) -> ClientRegistry:
    fmp_cred = get_credential(conn, FMPAdapter.name)
    return ClientRegistry(
        [
            YFinanceAdapter(),
            YahooQueryAdapter(),
            FMPAdapter(
                api_key=fmp_cred.api_key if fmp_cred else "",
                base_url=cfg.fmp_base_url,
                timeout=cfg.http_timeout_seconds,
                retry_attempts=cfg.http_retry_attempts,
                retry_backoff=cfg.http_retry_backoff_seconds,
            ),
        ]
    )
