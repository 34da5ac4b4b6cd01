"""
IPNI verification monitor.

Runs detached after a deal's upload completes and tracks whether its content
becomes discoverable:

1. Poll the provider's piece status until the piece has been retrieved
   (indexed → advertised → retrieved), or the status timeout elapses.
2. If retrieval was seen, give the indexer time to catch up.
3. Look up the root CID (with retries), then each block CID, in the public
   IPNI indexer and check the provider's multiaddr is among the announcers.

The monitor only ever touches the deal's ipni_* fields. Its errors stay here:
an unrecoverable failure marks ipni_status failed, is logged, and is re-raised
into the TaskSupervisor that owns the task.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed
from tenacity.stop import stop_base

from ..clients.protocols import DealStore
from ..config import config
from ..errors import VerificationError, error_message
from ..logging import get_logger, logging_context
from ..models.deal import Deal, IpniStatus, ServiceType
from ..utils import elapsed_ms, service_url_to_multiaddr, short, utcnow
from .ipni_client import IpniIndexerClient
from .pdp_client import PdpServerClient
from .types import (
    BlockCidsVerificationResult,
    FailedCid,
    IpniVerificationResult,
    MonitorAndVerifyResult,
    PieceMonitoringResult,
    PieceStatus,
    RootCidVerificationResult,
    SingleCidVerificationResult,
)

logger = get_logger(__name__)

# Poll errors are only logged on every Nth check
_POLL_ERROR_LOG_EVERY = 20

# stage → (timestamp field, time-to-stage field)
_STAGE_FIELDS = {
    IpniStatus.SP_INDEXED: ('ipni_indexed_at', 'ipni_time_to_index_ms'),
    IpniStatus.SP_ADVERTISED: ('ipni_advertised_at', 'ipni_time_to_advertise_ms'),
    IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST: ('ipni_retrieved_at', 'ipni_time_to_retrieve_ms'),
    IpniStatus.VERIFIED: ('ipni_verified_at', 'ipni_time_to_verify_ms'),
}


@dataclass(frozen=True)
class MonitorSettings:
    """Verification timings, in seconds."""

    poll_interval: float = 2.5
    status_timeout: float = 600.0
    lookup_timeout: float = 3600.0
    verification_delay: float = 30.0
    retry_interval: float = 10.0
    root_cid_max_retries: int = 5
    pdp_timeout: float = 10.0

    @classmethod
    def from_config(cls) -> 'MonitorSettings':
        return cls(
            poll_interval=config.IPNI_POLL_INTERVAL_SECONDS,
            status_timeout=config.IPNI_POLL_TIMEOUT_SECONDS,
            lookup_timeout=config.IPNI_LOOKUP_TIMEOUT_SECONDS,
            verification_delay=config.IPNI_VERIFICATION_DELAY_SECONDS,
            retry_interval=config.IPNI_RETRY_INTERVAL_SECONDS,
            root_cid_max_retries=config.IPNI_ROOT_CID_MAX_RETRIES,
            pdp_timeout=config.PDP_REQUEST_TIMEOUT_SECONDS,
        )


class stop_after_phase_timeout(stop_base):
    """Stop retrying once a phase that started at ``started`` has run past ``timeout``."""

    def __init__(self, started: float, timeout: float):
        self.started = started
        self.timeout = timeout

    def __call__(self, retry_state: RetryCallState) -> bool:
        return time.monotonic() - self.started > self.timeout


def derive_ipni_status(final_status: PieceStatus, root_cid_verified: bool) -> IpniStatus:
    """Highest stage reached. VERIFIED requires the root CID lookup to succeed."""
    if root_cid_verified:
        return IpniStatus.VERIFIED
    if final_status.retrieved:
        return IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST
    if final_status.advertised:
        return IpniStatus.SP_ADVERTISED
    if final_status.indexed:
        return IpniStatus.SP_INDEXED
    return IpniStatus.FAILED


def _elapsed_since(started: float) -> float:
    return time.monotonic() - started


class IpniVerificationMonitor:
    """
    Drives one deal's verification sub-state to its final value.

    Args:
        store: Deal store for best-effort progress saves
        indexer: IPNI lookup client, shared across deals
        settings: Timings (defaults to MonitorSettings.from_config())
        pdp_client_factory: Builds a piece status client for a service URL
    """

    def __init__(
        self,
        store: DealStore,
        indexer: IpniIndexerClient,
        settings: MonitorSettings | None = None,
        pdp_client_factory: Callable[..., PdpServerClient] = PdpServerClient,
    ):
        self.store = store
        self.indexer = indexer
        self.settings = settings or MonitorSettings.from_config()
        self.pdp_client_factory = pdp_client_factory

    async def run(self, deal: Deal) -> MonitorAndVerifyResult:
        """
        Full verification for one deal. Meant to run as a supervised task.

        Raises:
            VerificationError: The provider record has no usable service URL
            ValueError: The service URL cannot be turned into a multiaddr
        """
        with logging_context(deal_id=str(deal.id), provider_address=deal.sp_address):
            try:
                provider = deal.storage_provider
                if provider is None or not provider.service_url:
                    raise VerificationError(
                        'Storage provider service URL missing',
                        context={'sp_address': deal.sp_address},
                    )
                expected_multiaddr = service_url_to_multiaddr(provider.service_url)
                metadata = deal.addon_metadata(ServiceType.IPFS_PIN.value)

                async with self.pdp_client_factory(
                    provider.service_url, timeout=self.settings.pdp_timeout
                ) as pdp:
                    result = await self.monitor_and_verify(
                        pdp,
                        deal,
                        block_cids=metadata.get('block_cids') or [],
                        root_cid=metadata.get('root_cid') or '',
                        expected_multiaddr=expected_multiaddr,
                    )

                await self.update_deal_with_ipni_metrics(deal, result)
                return result

            except Exception as exc:
                deal.advance_ipni_status(IpniStatus.FAILED)
                await self._save(deal, 'ipni_monitor.failure_save_failed')
                logger.warning(
                    'ipni_monitor.failed',
                    piece_cid=short(deal.piece_cid),
                    error=error_message(exc),
                )
                raise

    async def monitor_and_verify(
        self,
        pdp: PdpServerClient,
        deal: Deal,
        block_cids: list[str],
        root_cid: str,
        expected_multiaddr: str,
    ) -> MonitorAndVerifyResult:
        monitoring = await self.monitor_piece_status(pdp, deal)

        if monitoring.final_status.retrieved:
            logger.info('ipni_monitor.waiting_for_indexer', delay_s=self.settings.verification_delay)
            await asyncio.sleep(self.settings.verification_delay)

        # The index lookup always runs; it decides the terminal state
        ipni = await self.verify_ipni_advertisement(root_cid, block_cids, expected_multiaddr)
        return MonitorAndVerifyResult(monitoring=monitoring, ipni=ipni)

    # =========================================================================
    # Phase 1: provider piece status
    # =========================================================================

    async def monitor_piece_status(self, pdp: PdpServerClient, deal: Deal) -> PieceMonitoringResult:
        """
        Poll piece status until retrieval is observed or the timeout elapses.

        Flags are sticky across polls and each is timestamped when first
        seen. Newly reached stages are applied to the deal and saved.
        On timeout the last observed status is returned with success=False.
        """
        piece_cid = deal.piece_cid or ''
        started = time.monotonic()
        last = PieceStatus()
        checks = 0

        while _elapsed_since(started) < self.settings.status_timeout:
            checks += 1
            try:
                reported = await pdp.get_piece_status(piece_cid)
            except VerificationError as exc:
                if checks % _POLL_ERROR_LOG_EVERY == 0:
                    logger.debug('ipni_monitor.status_check_error', checks=checks, error=error_message(exc))
            else:
                current, new_stages = self._merge_status(last, reported)
                if new_stages:
                    await self._record_stages(deal, current, new_stages)
                last = current

                if current.retrieved:
                    duration = round(_elapsed_since(started) * 1000)
                    logger.info(
                        'ipni_monitor.piece_retrieved',
                        piece_cid=short(piece_cid),
                        checks=checks,
                        duration_s=round(duration / 1000, 1),
                    )
                    return PieceMonitoringResult(
                        success=True, final_status=current, checks=checks, duration_ms=duration
                    )

            await asyncio.sleep(self.settings.poll_interval)

        duration = round(_elapsed_since(started) * 1000)
        logger.warning(
            'ipni_monitor.piece_retrieval_timeout',
            piece_cid=short(piece_cid),
            checks=checks,
            last_status=last.status,
            duration_s=round(duration / 1000, 1),
        )
        return PieceMonitoringResult(success=False, final_status=last, checks=checks, duration_ms=duration)

    @staticmethod
    def _merge_status(last: PieceStatus, reported: PieceStatus) -> tuple[PieceStatus, list[IpniStatus]]:
        now = utcnow()
        current = PieceStatus(
            status=reported.status or last.status,
            indexed=last.indexed or reported.indexed,
            advertised=last.advertised or reported.advertised,
            retrieved=last.retrieved or reported.retrieved or reported.retrieved_at is not None,
            retrieved_at=last.retrieved_at or reported.retrieved_at,
            indexed_at=last.indexed_at,
            advertised_at=last.advertised_at,
        )

        new_stages = []
        if current.indexed and not last.indexed:
            current.indexed_at = now
            new_stages.append(IpniStatus.SP_INDEXED)
        if current.advertised and not last.advertised:
            current.advertised_at = now
            new_stages.append(IpniStatus.SP_ADVERTISED)
        if current.retrieved and not last.retrieved:
            current.retrieved_at = current.retrieved_at or now
            new_stages.append(IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST)
        return current, new_stages

    async def _record_stages(self, deal: Deal, status: PieceStatus, stages: list[IpniStatus]) -> None:
        stamps = {
            IpniStatus.SP_INDEXED: status.indexed_at,
            IpniStatus.SP_ADVERTISED: status.advertised_at,
            IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST: status.retrieved_at,
        }
        for stage in stages:
            self._stamp_stage(deal, stage, stamps[stage] or utcnow())
            deal.advance_ipni_status(stage)
            logger.info('ipni_monitor.stage_reached', stage=stage.value, piece_cid=short(deal.piece_cid))
        await self._save(deal, 'ipni_monitor.progress_save_failed')

    # =========================================================================
    # Phase 3: IPNI indexer lookups
    # =========================================================================

    async def verify_ipni_advertisement(
        self,
        root_cid: str,
        block_cids: list[str],
        expected_multiaddr: str,
    ) -> IpniVerificationResult:
        """
        Verify the root CID (required), then the block CIDs (best effort).

        Both share one lookup_timeout measured from the start of this phase.
        """
        started = time.monotonic()
        failed: list[FailedCid] = []

        root = await self.verify_root_cid(root_cid, expected_multiaddr, started)
        if root.failed:
            failed.append(root.failed)

        blocks_verified = 0
        if root.verified:
            blocks = await self.verify_block_cids(block_cids, expected_multiaddr, started)
            blocks_verified = blocks.verified
            failed.extend(blocks.failed)

        verified = (1 if root.verified else 0) + blocks_verified
        total = len(block_cids) + 1
        duration = round(_elapsed_since(started) * 1000)

        if failed:
            logger.warning(
                'ipni_monitor.verification_partial',
                verified=verified,
                total=total,
                failed=len(failed),
            )
        else:
            logger.info('ipni_monitor.verification_complete', verified=verified, duration_ms=duration)

        return IpniVerificationResult(
            verified=verified,
            unverified=total - verified,
            total=total,
            root_cid_verified=root.verified,
            duration_ms=duration,
            verified_at=utcnow(),
            failed_cids=failed,
        )

    async def verify_root_cid(
        self,
        root_cid: str,
        expected_multiaddr: str,
        started: float,
    ) -> RootCidVerificationResult:
        """Look up the root CID, retrying on a fixed interval until it verifies."""
        if not root_cid:
            return RootCidVerificationResult(verified=False, failed=FailedCid(cid='', reason='missing root CID'))
        if _elapsed_since(started) > self.settings.lookup_timeout:
            return RootCidVerificationResult(verified=False, failed=FailedCid(cid=root_cid, reason='timeout'))

        logger.info('ipni_monitor.verifying_root_cid', root_cid=short(root_cid))

        attempts = 0

        async def attempt() -> SingleCidVerificationResult:
            nonlocal attempts
            attempts += 1
            return await self.verify_single_cid(root_cid, expected_multiaddr)

        retrying = AsyncRetrying(
            stop=(
                stop_after_attempt(self.settings.root_cid_max_retries)
                | stop_after_phase_timeout(started, self.settings.lookup_timeout)
            ),
            wait=wait_fixed(self.settings.retry_interval),
            retry=retry_if_result(lambda result: not result.verified),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=self._log_root_retry,
        )
        result: SingleCidVerificationResult = await retrying(attempt)

        if result.verified:
            logger.info('ipni_monitor.root_cid_verified', attempts=attempts)
            return RootCidVerificationResult(verified=True, attempts=attempts)

        reason = result.reason or 'unknown'
        if attempts < self.settings.root_cid_max_retries:
            reason = 'timeout'
        return RootCidVerificationResult(
            verified=False,
            attempts=attempts,
            failed=FailedCid(cid=root_cid, reason=reason, addrs=result.addrs),
        )

    def _log_root_retry(self, retry_state: RetryCallState) -> None:
        result = retry_state.outcome.result() if retry_state.outcome else None
        logger.debug(
            'ipni_monitor.root_cid_retry',
            attempt=retry_state.attempt_number,
            max_attempts=self.settings.root_cid_max_retries,
            reason=getattr(result, 'reason', None) or 'verification failed',
        )

    async def verify_block_cids(
        self,
        block_cids: list[str],
        expected_multiaddr: str,
        started: float,
    ) -> BlockCidsVerificationResult:
        """One lookup per block; stops early once the phase times out."""
        logger.info('ipni_monitor.verifying_block_cids', count=len(block_cids))
        result = BlockCidsVerificationResult()

        for cid in block_cids:
            if _elapsed_since(started) > self.settings.lookup_timeout:
                logger.warning(
                    'ipni_monitor.block_verification_timeout',
                    verified=result.verified + 1,
                    total=len(block_cids) + 1,
                )
                break

            single = await self.verify_single_cid(cid, expected_multiaddr)
            if single.verified:
                result.verified += 1
            else:
                result.failed.append(FailedCid(cid=cid, reason=single.reason or 'unknown', addrs=single.addrs))

        return result

    async def verify_single_cid(self, cid: str, expected_multiaddr: str) -> SingleCidVerificationResult:
        try:
            addrs = await self.indexer.query(cid)
        except VerificationError as exc:
            return SingleCidVerificationResult(verified=False, reason=error_message(exc))

        if not addrs:
            return SingleCidVerificationResult(verified=False, reason='not found', addrs=addrs)
        if expected_multiaddr not in addrs:
            return SingleCidVerificationResult(verified=False, reason='wrong multiaddr', addrs=addrs)
        return SingleCidVerificationResult(verified=True, addrs=addrs)

    # =========================================================================
    # Deal updates
    # =========================================================================

    async def update_deal_with_ipni_metrics(self, deal: Deal, result: MonitorAndVerifyResult) -> None:
        """Apply the final stage, first-seen timestamps and CID counts, then save."""
        final = result.monitoring.final_status
        ipni = result.ipni
        now = utcnow()

        if final.indexed:
            self._stamp_stage(deal, IpniStatus.SP_INDEXED, final.indexed_at or now)
        if final.advertised:
            self._stamp_stage(deal, IpniStatus.SP_ADVERTISED, final.advertised_at or now)
        if final.retrieved and final.retrieved_at:
            self._stamp_stage(deal, IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST, final.retrieved_at)
        if ipni.root_cid_verified:
            self._stamp_stage(deal, IpniStatus.VERIFIED, ipni.verified_at)

        deal.advance_ipni_status(derive_ipni_status(final, ipni.root_cid_verified))
        deal.ipni_verified_cids_count = ipni.verified
        deal.ipni_unverified_cids_count = ipni.unverified

        logger.info(
            'ipni_monitor.complete',
            ipni_status=deal.ipni_status.value if deal.ipni_status else None,
            piece_cid=short(deal.piece_cid),
            time_to_verify_ms=deal.ipni_time_to_verify_ms,
            verified=ipni.verified,
            unverified=ipni.unverified,
            total=ipni.total,
        )
        await self._save(deal, 'ipni_monitor.metrics_save_failed')

    @staticmethod
    def _stamp_stage(deal: Deal, stage: IpniStatus, at: datetime) -> None:
        """Set a stage's timestamp and time-to-stage metric, first occurrence only."""
        at_field, ms_field = _STAGE_FIELDS[stage]
        if getattr(deal, at_field) is not None:
            return
        setattr(deal, at_field, at)
        setattr(deal, ms_field, elapsed_ms(deal.upload_end_time or at, at))

    async def _save(self, deal: Deal, failure_event: str) -> bool:
        try:
            await self.store.save(deal)
            return True
        except Exception as exc:
            logger.warning(failure_event, error=error_message(exc))
            return False
