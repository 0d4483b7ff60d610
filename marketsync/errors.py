"""Error taxonomy for the sync pipeline.

Everything here is caught per symbol by the orchestrator and turned into a
batch error string; none of it is allowed to abort a batch.
"""


class SyncError(Exception):
    pass


class ProviderUnavailableError(SyncError):
    """No configured provider has credentials and quota for a data type."""

    def __init__(self, data_type: str):
        super().__init__(f"no provider available for {data_type}")
        self.data_type = data_type


class ProviderError(SyncError):
    """A provider call failed.

    `reached_provider` is False only when the request never got a response
    (connect failure, DNS, timeout before any reply); quota is charged otherwise.
    """

    reached_provider = True

    def __init__(self, provider: str, message: str, reached_provider: bool | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        if reached_provider is not None:
            self.reached_provider = reached_provider


class TransportError(ProviderError):
    pass


class MalformedResponseError(ProviderError):
    reached_provider = True


class PersistenceError(SyncError):
    pass
