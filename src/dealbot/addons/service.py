"""
Preprocessing pipeline over the addon registry.

DealAddonsService selects the addons that apply to a DealConfiguration,
runs them in priority order (each one's output is the next one's input),
merges their provider configuration, and later fans the deal lifecycle
hooks back out to the addons that were applied.
"""

import asyncio
from collections.abc import Iterable

from ..errors import AddonError, PipelineError, error_message
from ..logging import PipelineTimer, get_logger
from ..models.configuration import (
    AddonExecutionContext,
    DealConfiguration,
    DealPreprocessingResult,
    ProviderConfig,
)
from ..models.deal import Deal, ServiceType
from ..models.metadata import AddonMetadata
from .base import AddonCapability, DealAddon
from .registry import AddonRegistry

logger = get_logger(__name__)


class DealAddonsService:
    """
    Orchestrates addon execution during deal creation.

    Responsibilities:
    - Pick applicable addons, falling back to the registry default
    - Run them sequentially in ascending priority (stable on ties)
    - Namespace each addon's metadata under its name
    - Merge provider configuration, later addons overwriting earlier keys
    - Dispatch upload-complete and post-process hooks best-effort
    """

    def __init__(self, registry: AddonRegistry):
        self.registry = registry

    async def preprocess_deal(self, config: DealConfiguration) -> DealPreprocessingResult:
        """
        Run the preprocessing pipeline for one configuration.

        Args:
            config: Payload plus feature flags

        Returns:
            DealPreprocessingResult with processed payload, metadata,
            merged provider configuration and applied addon names

        Raises:
            AddonError: An addon transform or validation failed (tagged with
                        the addon name); nothing partial is returned
            PipelineError: Provider configuration export failed
        """
        timer = PipelineTimer()
        log = logger.bind(file_name=config.data_file.name, file_size=config.data_file.size)
        log.info('addons.preprocess_started')

        applicable = self.get_applicable_addons(config)
        if not applicable:
            log.warning('addons.none_applicable', fallback=self.registry.default.name.value)
            applicable = [self.registry.default]

        ordered = sort_by_priority(applicable)
        log.debug('addons.execution_order', order=[a.name.value for a in ordered])

        context = await self._execute_pipeline(ordered, config, timer)

        try:
            provider_config = merge_provider_configs(ordered, context.accumulated_metadata)
        except Exception as exc:
            log.error('addons.provider_config_failed', error=str(exc))
            raise PipelineError(f'Deal preprocessing failed: {exc}') from exc

        applied = [addon.name for addon in ordered]
        log.info(
            'addons.preprocess_complete',
            applied_addons=[a.value for a in applied],
            processed_size=context.current_data.size,
            **timer.summary(),
        )

        return DealPreprocessingResult(
            processed_data=context.current_data,
            metadata=context.accumulated_metadata,
            provider_config=provider_config,
            applied_addons=applied,
        )

    def get_applicable_addons(self, config: DealConfiguration) -> list[DealAddon]:
        applicable = [addon for addon in self.registry if addon.is_applicable(config)]
        for addon in applicable:
            logger.debug('addons.applicable', addon=addon.name.value)
        return applicable

    async def _execute_pipeline(
        self,
        addons: list[DealAddon],
        config: DealConfiguration,
        timer: PipelineTimer,
    ) -> AddonExecutionContext:
        context = AddonExecutionContext(
            current_data=config.data_file,
            configuration=config,
        )

        for addon in addons:
            name = addon.name.value
            try:
                with timer.stage(name):
                    result = await addon.preprocess_data(context)
                    if addon.has_capability(AddonCapability.VALIDATION):
                        await addon.validate(result)
            except AddonError as exc:
                logger.error('addons.addon_failed', addon=name, error=exc.message)
                raise
            except Exception as exc:
                logger.error('addons.addon_failed', addon=name, error=str(exc))
                raise AddonError(name, f'Add-on {name} preprocessing failed: {exc}') from exc

            context.current_data = context.current_data.model_copy(
                update={'data': bytes(result.data), 'size': result.size}
            )
            context.accumulated_metadata[name] = result.metadata

            logger.debug(
                'addons.addon_complete',
                addon=name,
                size=result.size,
                metadata_keys=list(type(result.metadata).model_fields),
            )

        return context

    # =========================================================================
    # Lifecycle hooks
    # =========================================================================

    async def handle_upload_complete(self, deal: Deal, applied_addons: Iterable[ServiceType]) -> None:
        """Run upload-complete hooks concurrently. Failures are logged, never raised."""
        await self._run_hooks(
            deal,
            applied_addons,
            AddonCapability.UPLOAD_COMPLETE_HOOK,
            lambda addon: addon.on_upload_complete(deal),
            'addons.upload_complete_hook_failed',
        )

    async def post_process_deal(self, deal: Deal, applied_addons: Iterable[ServiceType]) -> None:
        """Run post-process hooks concurrently. Failures are logged, never raised."""
        await self._run_hooks(
            deal,
            applied_addons,
            AddonCapability.POST_PROCESS_HOOK,
            lambda addon: addon.post_process(deal),
            'addons.post_process_hook_failed',
        )

    async def _run_hooks(self, deal, applied_addons, capability, call, failure_event) -> None:
        addons = [
            addon
            for addon in (self.registry.get(name) for name in applied_addons)
            if addon is not None and addon.has_capability(capability)
        ]
        if not addons:
            return

        outcomes = await asyncio.gather(*(call(addon) for addon in addons), return_exceptions=True)

        for addon, outcome in zip(addons, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    failure_event,
                    deal_id=str(deal.id),
                    addon=addon.name.value,
                    error=error_message(outcome),
                    error_type=type(outcome).__name__,
                )

        logger.debug('addons.hooks_complete', deal_id=str(deal.id), hook=capability.value)


def sort_by_priority(addons: Iterable[DealAddon]) -> list[DealAddon]:
    """Ascending priority. sorted() is stable, so ties keep registration order."""
    return sorted(addons, key=lambda addon: addon.priority)


def merge_provider_configs(
    addons: Iterable[DealAddon],
    deal_metadata: dict[str, AddonMetadata],
) -> ProviderConfig:
    """
    Merge provider configuration exports in execution order.

    Later addons overwrite keys set by earlier ones, in both namespaces.
    """
    merged = ProviderConfig()
    for addon in addons:
        if not addon.has_capability(AddonCapability.PROVIDER_CONFIG):
            continue
        exported = addon.get_provider_config(deal_metadata)
        merged.data_set_metadata.update(exported.data_set_metadata)
        merged.piece_metadata.update(exported.piece_metadata)

    logger.debug(
        'addons.provider_config_merged',
        data_set_keys=list(merged.data_set_metadata),
        piece_keys=list(merged.piece_metadata),
    )
    return merged
