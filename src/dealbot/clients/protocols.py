"""
Collaborator contracts for the deal pipeline.

The storage network SDK, the provider directory, dataset acquisition and the
deal store are external to this package. The pipeline only depends on these
structural interfaces; concrete implementations live beside them
(postgres_client, providers, datasets) or are supplied by the caller.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..models.configuration import DataFile
from ..models.deal import Deal
from ..models.provider import ProviderInfo, StorageProvider


# =============================================================================
# Storage backend
# =============================================================================


@dataclass
class UploadResult:
    """Final piece identifiers returned by a completed upload."""

    piece_cid: str
    size: int
    piece_id: int | str | None = None


@dataclass
class UploadCallbacks:
    """
    Edge-triggered notifications fired by the backend during upload.

    Each fires at most once, upload-complete first, and both are awaited by
    the backend before ``upload()`` returns.
    """

    on_upload_complete: Callable[[str], Awaitable[None]]
    on_piece_added: Callable[[str | None], Awaitable[None]]


@runtime_checkable
class StorageContext(Protocol):
    """A provider-side data set that pieces are uploaded into."""

    data_set_id: int | str | None

    async def upload(
        self,
        data: bytes,
        callbacks: UploadCallbacks,
        metadata: dict[str, str],
    ) -> UploadResult: ...


@runtime_checkable
class StorageBackend(Protocol):
    """Creates storage contexts on behalf of the automation wallet."""

    async def create_storage(
        self,
        provider_address: str,
        metadata: dict[str, str],
    ) -> StorageContext: ...


# =============================================================================
# Directory, datasets, persistence
# =============================================================================


@runtime_checkable
class ProviderDirectory(Protocol):
    """Source of the providers a batch fans out to."""

    async def count(self) -> int: ...

    async def list(self) -> list[ProviderInfo]: ...


@runtime_checkable
class DatasetSource(Protocol):
    """Supplies a payload sized within [min_size, max_size]."""

    async def fetch(self, min_size: int, max_size: int) -> DataFile: ...


@runtime_checkable
class DealStore(Protocol):
    """Persistence for deals plus the storage provider records they reference."""

    async def create(self, **fields: Any) -> Deal: ...

    async def save(self, deal: Deal) -> None: ...

    async def find_provider(self, address: str) -> StorageProvider | None: ...
