import sqlite3
from dataclasses import dataclass, field

import structlog

from ..models import DataType
from ..providers.common import ProviderClient
from ..providers.registry import ClientRegistry
from ..storage.providers import get_credential, get_provider_config
from .usage import UsageTracker

log = structlog.get_logger()


@dataclass
class Route:
    data_type: DataType
    clients: list[ProviderClient] = field(default_factory=list)

    @property
    def primary(self) -> ProviderClient:
        return self.clients[0]

    @property
    def fallback(self) -> ProviderClient | None:
        return self.clients[1] if len(self.clients) > 1 else None


class ProviderRouter:
    def __init__(self, conn: sqlite3.Connection, registry: ClientRegistry, usage: UsageTracker):
        self.conn = conn
        self.registry = registry
        self.usage = usage

    def is_usable(self, provider: str | None, data_type: DataType) -> bool:
        client = self.registry.get(provider)
        if client is None or not client.supports(data_type):
            return False
        cred = get_credential(self.conn, provider)
        if cred is None or not cred.is_usable():
            return False
        return self.usage.can_make_request(provider)

    def route(self, data_type: DataType) -> Route | None:
        """Usable clients for a data type in [primary, fallback] order, or None."""
        data_type = DataType(data_type)
        config = get_provider_config(self.conn, data_type)
        if config is None or not config.is_active:
            log.warning("route_no_config", data_type=data_type.value)
            return None
        clients = []
        for name in (config.primary_provider, config.fallback_provider):
            if not name or any(c.name == name for c in clients):
                continue
            if self.is_usable(name, data_type):
                clients.append(self.registry.get(name))
        if not clients:
            return None
        return Route(data_type=data_type, clients=clients)
