"""
Pytest configuration and shared fixtures.

Key fixtures:
- data_file / make_config: payloads and deal configurations
- mock_store: AsyncMock DealStore that builds real Deal objects
- storage_backend: in-memory StorageBackend firing upload callbacks
- registry / addons_service: real addons wired to mocked collaborators

No network, database or storage network access is needed: every external
collaborator is faked.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from dealbot.addons import (  # noqa: E402
    AddonRegistry,
    CdnAddonStrategy,
    DealAddonsService,
    DirectAddonStrategy,
    IpniAddonStrategy,
)
from dealbot.clients.protocols import UploadResult  # noqa: E402
from dealbot.models import DataFile, Deal, DealConfiguration, StorageProvider  # noqa: E402
from dealbot.verification import TaskSupervisor  # noqa: E402

PROVIDER_ADDRESS = '0x1111111111111111111111111111111111111111'
SERVICE_URL = 'https://sp1.example.com'
WALLET_ADDRESS = '0xwallet000000000000000000000000000000000000'


# =============================================================================
# Storage backend fakes
# =============================================================================


class FakeStorageContext:
    """Uploads succeed (or fail) immediately and fire both callbacks in order."""

    def __init__(
        self,
        data_set_id: int | None = 42,
        piece_cid: str = 'bafkzcibdpiececid',
        piece_id: int = 7,
        transaction_hash: str = '0xfeed',
        upload_error: BaseException | None = None,
    ):
        self.data_set_id = data_set_id
        self.piece_cid = piece_cid
        self.piece_id = piece_id
        self.transaction_hash = transaction_hash
        self.upload_error = upload_error
        self.uploads: list[tuple[bytes, dict[str, str]]] = []

    async def upload(self, data, callbacks, metadata):
        self.uploads.append((data, metadata))
        if self.upload_error is not None:
            raise self.upload_error
        await callbacks.on_upload_complete(self.piece_cid)
        await callbacks.on_piece_added(self.transaction_hash)
        return UploadResult(piece_cid=self.piece_cid, size=len(data), piece_id=self.piece_id)


class FakeStorageBackend:
    """Hands out FakeStorageContexts; per-address errors can be injected."""

    def __init__(
        self,
        create_errors: dict[str, BaseException] | None = None,
        upload_errors: dict[str, BaseException] | None = None,
    ):
        self.create_errors = create_errors or {}
        self.upload_errors = upload_errors or {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.contexts: dict[str, FakeStorageContext] = {}

    async def create_storage(self, provider_address, metadata):
        self.calls.append((provider_address, metadata))
        if provider_address in self.create_errors:
            raise self.create_errors[provider_address]
        context = FakeStorageContext(upload_error=self.upload_errors.get(provider_address))
        self.contexts[provider_address] = context
        return context


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def data_file() -> DataFile:
    payload = b'dealbot test payload ' * 64
    return DataFile(name='sample.bin', data=payload, size=len(payload))


@pytest.fixture
def make_config(data_file):
    """Factory for DealConfiguration with the given flags."""

    def _make(enable_cdn: bool = False, enable_ipni: bool = False, file: DataFile | None = None):
        return DealConfiguration(
            data_file=file or data_file,
            enable_cdn=enable_cdn,
            enable_ipni=enable_ipni,
        )

    return _make


@pytest.fixture
def storage_provider() -> StorageProvider:
    return StorageProvider(
        address=PROVIDER_ADDRESS,
        provider_id=1,
        name='sp-one',
        service_url=SERVICE_URL,
        is_active=True,
        is_approved=True,
    )


@pytest.fixture
def mock_store(storage_provider):
    """DealStore mock: create() builds a real Deal, save() records calls."""
    store = AsyncMock()

    async def _create(**fields):
        return Deal(**fields)

    store.create = AsyncMock(side_effect=_create)
    store.save = AsyncMock()
    store.find_provider = AsyncMock(return_value=storage_provider)
    return store


@pytest.fixture
def storage_backend() -> FakeStorageBackend:
    return FakeStorageBackend()


@pytest.fixture
def mock_monitor():
    """IpniVerificationMonitor stand-in; run() returns immediately."""
    monitor = MagicMock()
    monitor.run = AsyncMock(return_value=None)
    return monitor


@pytest.fixture
def supervisor() -> TaskSupervisor:
    return TaskSupervisor()


@pytest.fixture
def registry(mock_store, mock_monitor, supervisor) -> AddonRegistry:
    """Production addon set: IPNI, CDN, plus the direct default."""
    return AddonRegistry(
        [
            IpniAddonStrategy(mock_store, mock_monitor, supervisor, block_size=256),
            CdnAddonStrategy(),
        ],
        default=DirectAddonStrategy(),
    )


@pytest.fixture
def addons_service(registry) -> DealAddonsService:
    return DealAddonsService(registry)


@pytest.fixture
def backend_factory():
    """FakeStorageBackend class, for tests that inject per-provider errors."""
    return FakeStorageBackend
