"""
Process wiring for the dealbot pipeline.

``dealbot_runtime()`` builds every long-lived collaborator once at startup
and tears them down at shutdown:

    PostgresDealStore ─┐
    IpniIndexerClient ─┼─► IpniVerificationMonitor ─► IpniAddonStrategy
    TaskSupervisor ────┘                                   │
                                  AddonRegistry ◄──────────┘
                                       │
                    DealAddonsService ─┴─► DealOrchestrator ─► DealBatchCoordinator

The storage backend and the primary dataset source are supplied by the
caller; they sit outside this package.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .addons import (
    AddonRegistry,
    CdnAddonStrategy,
    DealAddonsService,
    DirectAddonStrategy,
    IpniAddonStrategy,
)
from .clients import (
    DatasetSource,
    LocalDatasetSource,
    PostgresDealStore,
    ProviderDirectory,
    StorageBackend,
    StoreProviderDirectory,
)
from .config import config
from .errors import ConfigurationError
from .logging import get_logger
from .pipeline import DealBatchCoordinator, DealOrchestrator
from .verification import IpniIndexerClient, IpniVerificationMonitor, MonitorSettings, TaskSupervisor

logger = get_logger(__name__)

# Seconds to let in-flight verification finish before cancelling it
SHUTDOWN_GRACE_SECONDS = 30.0


@dataclass
class DealbotRuntime:
    """Everything a scheduler needs to run batches."""

    store: PostgresDealStore
    indexer: IpniIndexerClient
    supervisor: TaskSupervisor
    registry: AddonRegistry
    addons_service: DealAddonsService
    orchestrator: DealOrchestrator
    coordinator: DealBatchCoordinator


def build_registry(
    store: PostgresDealStore,
    monitor: IpniVerificationMonitor,
    supervisor: TaskSupervisor,
) -> AddonRegistry:
    """Production addon set in registration order; direct storage is the default."""
    return AddonRegistry(
        [
            IpniAddonStrategy(store, monitor, supervisor),
            CdnAddonStrategy(),
        ],
        default=DirectAddonStrategy(),
    )


@asynccontextmanager
async def dealbot_runtime(
    backend: StorageBackend,
    primary_source: DatasetSource,
    directory: ProviderDirectory | None = None,
    database_url: str | None = None,
    shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
) -> AsyncIterator[DealbotRuntime]:
    """
    Connect, wire and yield the pipeline; close everything on exit.

    Args:
        backend: Storage network backend
        primary_source: Preferred dataset source; the local dataset
                        directory (config.LOCAL_DATASET_PATH) is the fallback
        directory: Provider directory (defaults to approved providers
                   from the store)
        database_url: Overrides config.DATABASE_URL
        shutdown_grace: Seconds to wait for background verification before
                        cancelling it

    Raises:
        ConfigurationError: Required settings are missing or the database
                            is unreachable
    """
    missing = config.validate()
    if database_url:
        missing = [key for key in missing if key != 'DATABASE_URL']
    if missing:
        raise ConfigurationError(
            f'Missing required configuration: {", ".join(missing)}',
            context={'missing': missing},
        )

    logger.info('runtime.startup')

    store = PostgresDealStore(database_url or config.DATABASE_URL)
    await store.connect()
    if not await store.verify_connectivity():
        await store.close()
        raise ConfigurationError('Database connectivity check failed')

    indexer = IpniIndexerClient()
    supervisor = TaskSupervisor()
    monitor = IpniVerificationMonitor(store, indexer, MonitorSettings.from_config())

    registry = build_registry(store, monitor, supervisor)
    addons_service = DealAddonsService(registry)
    orchestrator = DealOrchestrator(store, backend, addons_service)
    coordinator = DealBatchCoordinator(
        orchestrator,
        addons_service,
        directory or StoreProviderDirectory(store),
        primary_source,
        fallback_source=LocalDatasetSource(config.LOCAL_DATASET_PATH),
    )

    logger.info('runtime.ready', addons=registry.names())
    try:
        yield DealbotRuntime(
            store=store,
            indexer=indexer,
            supervisor=supervisor,
            registry=registry,
            addons_service=addons_service,
            orchestrator=orchestrator,
            coordinator=coordinator,
        )
    finally:
        logger.info('runtime.shutdown', active_tasks=supervisor.active_count)
        if not await supervisor.wait_all(timeout=shutdown_grace):
            logger.warning('runtime.cancelling_tasks', active_tasks=supervisor.active_count)
            await supervisor.cancel_all()
        await indexer.close()
        await store.close()
