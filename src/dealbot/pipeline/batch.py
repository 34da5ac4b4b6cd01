"""
Batch fan-out across storage providers.

One batch run preprocesses a single payload once, then creates a deal with
every provider. Providers are processed in fixed-size groups: groups run one
after another, and within a group every provider runs concurrently via
asyncio.gather(return_exceptions=True), so one provider failing never
cancels or delays its siblings.
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime

from ..addons.service import DealAddonsService
from ..clients.protocols import DatasetSource, ProviderDirectory
from ..config import config
from ..errors import PartialSuccessResult, error_message
from ..logging import PipelineTimer, get_logger, logging_context
from ..models.configuration import DataFile, DealConfiguration, DealPreprocessingResult
from ..models.deal import Deal
from ..models.provider import ProviderInfo
from ..utils import utcnow, uuid7
from .orchestrator import DealOrchestrator

logger = get_logger(__name__)


# =============================================================================
# Result Models
# =============================================================================


@dataclass
class ProviderFailure:
    """Diagnostic for a provider whose deal could not be created."""

    provider_address: str
    error: str
    exception: BaseException | None = field(default=None, repr=False, compare=False)


@dataclass
class ProviderOutcome:
    """Per-provider result: a Deal or the exception that was raised, never both."""

    provider_address: str
    deal: Deal | None = None
    error: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.deal is not None and self.error is None


@dataclass
class BatchDealResult:
    """Aggregate of one batch run."""

    batch_id: str
    total_providers: int
    deals: list[Deal] = field(default_factory=list)
    failures: list[ProviderFailure] = field(default_factory=list)
    configuration: DealConfiguration | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def success_count(self) -> int:
        return len(self.deals)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def to_partial_result(self) -> PartialSuccessResult:
        """Per-provider bookkeeping keyed by provider address, original exceptions kept."""
        partial = PartialSuccessResult()
        for deal in self.deals:
            partial.add_success(item_id=deal.sp_address, data={'deal_id': str(deal.id)})
        for failure in self.failures:
            partial.add_failure(
                failure.exception or RuntimeError(failure.error),
                item_id=failure.provider_address,
            )
        return partial

    def to_dict(self) -> dict:
        """Serialize for logging."""
        return {
            'batch_id': self.batch_id,
            'total_providers': self.total_providers,
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'deal_ids': [str(d.id) for d in self.deals],
            'failures': [
                {'provider_address': f.provider_address, 'error': f.error} for f in self.failures
            ],
        }


# =============================================================================
# DealBatchCoordinator
# =============================================================================


class DealBatchCoordinator:
    """
    Runs deal creation for every provider in the directory.

    Args:
        orchestrator: Creates single deals
        addons_service: Preprocesses the payload once per batch
        directory: Providers to fan out to
        primary_source: Preferred dataset source
        fallback_source: Used when the primary source raises
        max_concurrency: Group size (defaults to config.DEAL_MAX_CONCURRENCY)
        rng: Random source for the CDN/IPNI coin flips
    """

    def __init__(
        self,
        orchestrator: DealOrchestrator,
        addons_service: DealAddonsService,
        directory: ProviderDirectory,
        primary_source: DatasetSource,
        fallback_source: DatasetSource | None = None,
        max_concurrency: int | None = None,
        rng: random.Random | None = None,
    ):
        self.orchestrator = orchestrator
        self.addons_service = addons_service
        self.directory = directory
        self.primary_source = primary_source
        self.fallback_source = fallback_source
        self.max_concurrency = max_concurrency or config.DEAL_MAX_CONCURRENCY
        self._rng = rng or random.Random()

    async def create_deals_for_all_providers(
        self,
        configuration: DealConfiguration | None = None,
    ) -> list[Deal]:
        """Run a batch and return only the deals that succeeded."""
        result = await self.run_batch(configuration)
        return result.deals

    async def run_batch(self, configuration: DealConfiguration | None = None) -> BatchDealResult:
        """
        Run a batch and return successes plus per-provider failures.

        Args:
            configuration: Payload and flags; built from a fetched data file
                           and random addon flags when omitted

        Raises:
            AddonError: Preprocessing failed; no provider was contacted
            DealbotError: Neither dataset source could supply a file
        """
        batch_id = str(uuid7())
        timer = PipelineTimer()

        with logging_context(batch_id=batch_id):
            total = await self.directory.count()
            started_at = utcnow()

            if configuration is None:
                configuration = await self.build_configuration()

            logger.info(
                'batch.started',
                total_providers=total,
                enable_cdn=configuration.enable_cdn,
                enable_ipni=configuration.enable_ipni,
                file_name=configuration.data_file.name,
            )

            with timer.stage('preprocess'):
                deal_input = await self.addons_service.preprocess_deal(configuration)

            providers = await self.directory.list()

            with timer.stage('fan_out'):
                outcomes = await self.process_providers_in_parallel(
                    providers, deal_input, self.max_concurrency
                )

            result = BatchDealResult(
                batch_id=batch_id,
                total_providers=total,
                configuration=configuration,
                started_at=started_at,
            )
            for outcome in outcomes:
                if outcome.success:
                    result.deals.append(outcome.deal)
                else:
                    result.failures.append(
                        ProviderFailure(
                            provider_address=outcome.provider_address,
                            error=error_message(outcome.error) if outcome.error else 'Unknown error',
                            exception=outcome.error,
                        )
                    )
            result.completed_at = utcnow()

            partial = result.to_partial_result()
            logger.info(
                'batch.complete',
                successful=result.success_count,
                total=total,
                summary=f'{result.success_count}/{total}',
                failed=result.failure_count,
                **timer.summary(),
            )
            if partial.failure_count:
                logger.warning(
                    'batch.partial_failure',
                    failed_ids=partial.to_dict()['failed_ids'],
                    error_types=sorted({type(item.error).__name__ for item in partial.failed if item.error}),
                )
            return result

    async def build_configuration(self) -> DealConfiguration:
        """Fetch a payload and roll the addon testing flags (p=0.5 each when enabled)."""
        enable_cdn = config.ENABLE_CDN_TESTING and self._rng.random() > 0.5
        enable_ipni = config.ENABLE_IPNI_TESTING and self._rng.random() > 0.5
        data_file = await self.fetch_data_file(config.MIN_UPLOAD_SIZE, config.MAX_UPLOAD_SIZE)
        return DealConfiguration(data_file=data_file, enable_cdn=enable_cdn, enable_ipni=enable_ipni)

    async def fetch_data_file(self, min_size: int, max_size: int) -> DataFile:
        """Primary source first; any failure falls back to the secondary source."""
        try:
            return await self.primary_source.fetch(min_size, max_size)
        except Exception as exc:
            if self.fallback_source is None:
                raise
            logger.warning('batch.primary_dataset_failed', error=error_message(exc))
            return await self.fallback_source.fetch(min_size, max_size)

    async def process_providers_in_parallel(
        self,
        providers: list[ProviderInfo],
        deal_input: DealPreprocessingResult,
        max_concurrency: int = 10,
    ) -> list[ProviderOutcome]:
        """
        Create deals in groups of ``max_concurrency``.

        Returns:
            One ProviderOutcome per provider, in input order
        """
        if max_concurrency < 1:
            raise ValueError('max_concurrency must be at least 1')

        outcomes: list[ProviderOutcome] = []

        for start in range(0, len(providers), max_concurrency):
            group = providers[start:start + max_concurrency]
            logger.debug(
                'batch.group_started',
                group=start // max_concurrency + 1,
                size=len(group),
            )

            results = await asyncio.gather(
                *(self.orchestrator.create_deal(provider, deal_input) for provider in group),
                return_exceptions=True,
            )

            for provider, result in zip(group, results):
                address = provider.service_provider
                if isinstance(result, BaseException):
                    logger.warning(
                        'batch.provider_failed',
                        provider_address=address,
                        error=error_message(result),
                        error_type=type(result).__name__,
                    )
                    outcomes.append(ProviderOutcome(provider_address=address, error=result))
                else:
                    outcomes.append(ProviderOutcome(provider_address=address, deal=result))

        return outcomes
