"""
Provider directories: where a batch run gets its list of providers.

StaticProviderDirectory serves a fixed list (tests, one-off runs).
StoreProviderDirectory reads active, approved providers from the deal store.
"""

from collections.abc import Iterable

from ..logging import get_logger
from ..models.provider import ProviderInfo
from .postgres_client import PostgresDealStore

logger = get_logger(__name__)


class StaticProviderDirectory:
    """A fixed provider list."""

    def __init__(self, providers: Iterable[ProviderInfo]):
        self._providers = list(providers)

    async def count(self) -> int:
        return len(self._providers)

    async def list(self) -> list[ProviderInfo]:
        return list(self._providers)


class StoreProviderDirectory:
    """
    Providers from the storage_providers table.

    Args:
        store: Connected PostgresDealStore
        approved_only: Skip providers that are not yet approved for testing
    """

    def __init__(self, store: PostgresDealStore, approved_only: bool = True):
        self.store = store
        self.approved_only = approved_only

    async def count(self) -> int:
        return len(await self.list())

    async def list(self) -> list[ProviderInfo]:
        records = await self.store.list_providers(active_only=True)
        if self.approved_only:
            records = [r for r in records if r.is_approved]

        providers = [r.to_provider_info() for r in records]
        logger.debug('provider_directory.loaded', count=len(providers))
        return providers
