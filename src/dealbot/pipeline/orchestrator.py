"""
Deal lifecycle orchestrator.

Drives one deal with one storage provider:

    pending → uploaded → piece_added → deal_created
                      ↘ failed (from any state)

1. Create the Deal record (pending) and attach the provider's stored record
2. Create a storage context with the merged data-set metadata
3. Upload the processed payload; backend callbacks move the deal through
   uploaded and piece_added and trigger the addons' upload-complete hooks
4. Apply the upload result (deal_created) and run post-process hooks
5. Always persist the deal exactly once, whatever happened
"""

from functools import partial

from ..addons.service import DealAddonsService
from ..clients.protocols import DealStore, StorageBackend, UploadCallbacks, UploadResult
from ..config import config
from ..errors import UploadError, error_message, wrap_backend_error
from ..logging import get_logger, logging_context
from ..models.configuration import DealPreprocessingResult
from ..models.deal import Deal, DealStatus, ServiceType
from ..models.provider import ProviderInfo
from ..utils import elapsed_ms, short, utcnow

logger = get_logger(__name__)


class DealOrchestrator:
    """
    Creates deals one provider at a time.

    Args:
        store: Deal store (create/save/find_provider)
        backend: Storage network backend
        addons_service: Runs the addon lifecycle hooks
        wallet_address: Client wallet recorded on every deal
    """

    def __init__(
        self,
        store: DealStore,
        backend: StorageBackend,
        addons_service: DealAddonsService,
        wallet_address: str | None = None,
    ):
        self.store = store
        self.backend = backend
        self.addons_service = addons_service
        self.wallet_address = wallet_address if wallet_address is not None else config.WALLET_ADDRESS

    async def create_deal(self, provider_info: ProviderInfo, deal_input: DealPreprocessingResult) -> Deal:
        """
        Create and upload one deal.

        Args:
            provider_info: The provider to store with
            deal_input: Shared preprocessing output for the batch

        Returns:
            The Deal in deal_created state

        Raises:
            BackendError: Storage context creation or upload failed. The deal
                          is persisted as failed before this propagates.
        """
        provider_address = provider_info.service_provider
        applied_addons = list(deal_input.applied_addons)

        deal = await self.store.create(
            file_name=deal_input.processed_data.name,
            file_size=deal_input.processed_data.size,
            sp_address=provider_address,
            status=DealStatus.PENDING,
            wallet_address=self.wallet_address,
            metadata=deal_input.metadata_dump(),
            service_types=applied_addons,
        )

        with logging_context(deal_id=str(deal.id), provider_address=provider_address):
            stage = 'create_storage'
            try:
                deal.storage_provider = await self.store.find_provider(provider_address)

                storage = await self.backend.create_storage(
                    provider_address,
                    dict(deal_input.provider_config.data_set_metadata),
                )
                deal.data_set_id = storage.data_set_id
                deal.upload_start_time = utcnow()

                stage = 'upload'
                callbacks = UploadCallbacks(
                    on_upload_complete=partial(self._handle_upload_complete, deal, applied_addons),
                    on_piece_added=partial(self._handle_piece_added, deal),
                )
                upload_result = await storage.upload(
                    deal_input.processed_data.data,
                    callbacks,
                    dict(deal_input.provider_config.piece_metadata),
                )

                self._apply_upload_result(deal, upload_result)
                logger.info(
                    'deal.created',
                    piece_cid=short(deal.piece_cid),
                    data_set_id=deal.data_set_id,
                    deal_latency_ms=deal.deal_latency_ms,
                )

                await self.addons_service.post_process_deal(deal, applied_addons)
                return deal

            except Exception as exc:
                error = wrap_backend_error(exc, stage, {'sp_address': provider_address})
                deal.mark_failed(error.message, error.error_code)
                logger.error(
                    'deal.failed',
                    stage=stage,
                    error=error.message,
                    error_code=error.error_code,
                    error_type=type(exc).__name__,
                )
                if error is exc:
                    raise
                raise error from exc

            finally:
                await self._save_deal(deal)

    # =========================================================================
    # Upload callbacks
    # =========================================================================

    async def _handle_upload_complete(
        self,
        deal: Deal,
        applied_addons: list[ServiceType],
        piece_cid: str,
    ) -> None:
        deal.piece_cid = str(piece_cid)
        deal.upload_end_time = utcnow()
        deal.ingest_latency_ms = elapsed_ms(deal.upload_start_time, deal.upload_end_time)
        deal.ingest_throughput_bps = (
            round(deal.file_size / (deal.ingest_latency_ms / 1000))
            if deal.ingest_latency_ms
            else None
        )
        deal.advance_status(DealStatus.UPLOADED)

        logger.info(
            'deal.upload_complete',
            piece_cid=short(deal.piece_cid),
            ingest_latency_ms=deal.ingest_latency_ms,
            ingest_throughput_bps=deal.ingest_throughput_bps,
        )

        await self.addons_service.handle_upload_complete(deal, applied_addons)

    async def _handle_piece_added(self, deal: Deal, transaction_hash: str | None) -> None:
        deal.piece_added_time = utcnow()
        deal.chain_latency_ms = elapsed_ms(deal.upload_end_time, deal.piece_added_time)
        deal.transaction_hash = transaction_hash
        deal.advance_status(DealStatus.PIECE_ADDED)

        logger.info('deal.piece_added', chain_latency_ms=deal.chain_latency_ms, tx=short(transaction_hash))

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _apply_upload_result(deal: Deal, result: UploadResult) -> None:
        if not result.piece_cid or deal.data_set_id is None:
            raise UploadError(
                'Upload result missing piece CID or data set id',
                context={'piece_cid': result.piece_cid, 'data_set_id': deal.data_set_id},
            )

        deal.piece_cid = str(result.piece_cid)
        deal.piece_size = result.size
        deal.piece_id = result.piece_id
        deal.deal_confirmed_time = utcnow()
        deal.deal_latency_ms = elapsed_ms(deal.upload_start_time, deal.deal_confirmed_time)
        deal.advance_status(DealStatus.DEAL_CREATED)

    async def _save_deal(self, deal: Deal) -> None:
        """Persist the deal; a failed write is logged and never raised."""
        try:
            await self.store.save(deal)
        except Exception as exc:
            logger.warning(
                'deal.save_failed',
                piece_cid=short(deal.piece_cid),
                status=deal.status.value,
                error=error_message(exc),
            )
