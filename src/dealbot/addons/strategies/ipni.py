"""
IPNI (InterPlanetary Network Indexer) addon.

Converts the payload to a CAR archive so the provider can announce its
blocks to IPNI, then, once the upload completes, starts the background
verification monitor for the deal.
"""

import asyncio

from ...clients.protocols import DealStore
from ...errors import AddonError, AddonValidationError
from ...logging import get_logger
from ...models.configuration import (
    IPFS_ROOT_CID,
    WITH_IPFS_INDEXING,
    AddonExecutionContext,
    AddonResult,
    DealConfiguration,
    ProviderConfig,
)
from ...models.deal import Deal, IpniStatus, ServiceType
from ...models.metadata import AddonMetadata, IpniMetadata
from ...utils import short
from ...verification.monitor import IpniVerificationMonitor
from ...verification.supervisor import TaskSupervisor
from ..base import AddonCapability, AddonPriority, DealAddon
from ..car import MAX_BLOCK_SIZE, convert_to_car

logger = get_logger(__name__)


class IpniAddonStrategy(DealAddon):
    """Data transformation addon; runs first."""

    name = ServiceType.IPFS_PIN
    priority = AddonPriority.HIGH
    capabilities = frozenset({
        AddonCapability.PROVIDER_CONFIG,
        AddonCapability.VALIDATION,
        AddonCapability.UPLOAD_COMPLETE_HOOK,
    })

    def __init__(
        self,
        store: DealStore,
        monitor: IpniVerificationMonitor,
        supervisor: TaskSupervisor,
        block_size: int = MAX_BLOCK_SIZE,
    ):
        self.store = store
        self.monitor = monitor
        self.supervisor = supervisor
        self.block_size = block_size

    def is_applicable(self, config: DealConfiguration) -> bool:
        return config.enable_ipni

    async def preprocess_data(self, context: AddonExecutionContext) -> AddonResult:
        current = context.current_data
        try:
            car = await asyncio.to_thread(convert_to_car, current.data, self.block_size)
        except Exception as exc:
            logger.error('ipni_addon.car_conversion_failed', error=str(exc))
            raise AddonError(self.name.value, f'IPNI preprocessing failed: {exc}') from exc

        logger.info(
            'ipni_addon.car_converted',
            blocks=car.block_count,
            car_kb=round(car.car_size / 1024, 1),
        )

        metadata = IpniMetadata(
            enabled=True,
            root_cid=str(car.root_cid),
            block_cids=[str(cid) for cid in car.block_cids],
            block_count=car.block_count,
            car_size=car.car_size,
            original_size=current.size,
        )
        return AddonResult(
            data=car.car_data,
            size=car.car_size,
            metadata=metadata,
            original_data=current.data,
        )

    def get_provider_config(self, deal_metadata: dict[str, AddonMetadata]) -> ProviderConfig:
        metadata = deal_metadata.get(self.name.value)
        if not isinstance(metadata, IpniMetadata) or not metadata.root_cid:
            return ProviderConfig()
        return ProviderConfig(
            data_set_metadata={WITH_IPFS_INDEXING: ''},
            piece_metadata={IPFS_ROOT_CID: metadata.root_cid},
        )

    async def validate(self, result: AddonResult) -> None:
        metadata = result.metadata
        if not isinstance(metadata, IpniMetadata) or not metadata.enabled:
            raise AddonValidationError(self.name.value, 'IPNI validation failed: enabled flag not set')
        if not metadata.root_cid:
            raise AddonValidationError(self.name.value, 'IPNI validation failed: rootCID not generated')
        if not metadata.block_cids:
            raise AddonValidationError(self.name.value, 'IPNI validation failed: no block CIDs generated')
        if metadata.block_count != len(metadata.block_cids):
            raise AddonValidationError(
                self.name.value,
                'IPNI validation failed: block count mismatch '
                f'(expected {metadata.block_count}, got {len(metadata.block_cids)})',
            )
        if not result.data or result.size == 0:
            raise AddonValidationError(self.name.value, 'IPNI validation failed: CAR data is empty')

    async def on_upload_complete(self, deal: Deal) -> None:
        """Mark IPNI tracking as pending and start the monitor in the background."""
        if deal.storage_provider is None:
            logger.warning('ipni_addon.no_storage_provider', deal_id=str(deal.id))
            return

        deal.advance_ipni_status(IpniStatus.PENDING)
        try:
            await self.store.save(deal)
        except Exception as exc:
            logger.warning('ipni_addon.pending_save_failed', deal_id=str(deal.id), error=str(exc))

        logger.info('ipni_addon.tracking_started', piece_cid=short(deal.piece_cid))

        self.supervisor.spawn(
            self.monitor.run(deal),
            name=f'ipni-monitor-{deal.id}',
            deal_id=str(deal.id),
            piece_cid=deal.piece_cid,
        )
