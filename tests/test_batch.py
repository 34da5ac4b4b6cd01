"""
Tests for DealBatchCoordinator (fan-out across providers).
"""

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from dealbot.clients import LocalDatasetSource, StaticProviderDirectory
from dealbot.config import Config
from dealbot.errors import AddonError, ConfigurationError, UploadError
from dealbot.models import DataFile, DealStatus, ProviderInfo
from dealbot.pipeline import DealBatchCoordinator, DealOrchestrator

from conftest import WALLET_ADDRESS


def _providers(count):
    return [
        ProviderInfo(service_provider=f'0x{i:040x}', service_url=f'https://sp{i}.example.com')
        for i in range(1, count + 1)
    ]


@pytest.fixture
def make_coordinator(mock_store, addons_service, data_file):
    def _make(providers, backend, **kwargs):
        orchestrator = DealOrchestrator(mock_store, backend, addons_service, wallet_address=WALLET_ADDRESS)
        primary = kwargs.pop('primary_source', None)
        if primary is None:
            primary = MagicMock()
            primary.fetch = AsyncMock(return_value=data_file)
        return DealBatchCoordinator(
            orchestrator,
            addons_service,
            StaticProviderDirectory(providers),
            primary,
            **kwargs,
        )

    return _make


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_all_providers_succeed(self, make_coordinator, storage_backend, make_config):
        providers = _providers(3)
        coordinator = make_coordinator(providers, storage_backend)

        result = await coordinator.run_batch(make_config(enable_cdn=True))

        assert result.total_providers == 3
        assert result.success_count == 3
        assert result.failures == []
        assert {d.sp_address for d in result.deals} == {p.service_provider for p in providers}
        assert all(d.status == DealStatus.DEAL_CREATED for d in result.deals)
        assert result.started_at <= result.completed_at

    @pytest.mark.asyncio
    async def test_one_failure_isolated(self, make_coordinator, backend_factory, make_config, mock_store):
        providers = _providers(2)
        failing = providers[1].service_provider
        backend = backend_factory(upload_errors={failing: ConnectionError('connection reset')})
        coordinator = make_coordinator(providers, backend)

        result = await coordinator.run_batch(make_config())

        assert [d.sp_address for d in result.deals] == [providers[0].service_provider]
        assert len(result.failures) == 1
        assert result.failures[0].provider_address == failing
        assert result.failures[0].error == 'connection reset'
        # both deals persisted, the failed one as failed
        saved = {call.args[0].sp_address: call.args[0] for call in mock_store.save.await_args_list}
        assert saved[failing].status == DealStatus.FAILED

        summary = result.to_dict()
        assert summary['success_count'] == 1
        assert summary['failure_count'] == 1

        partial = result.to_partial_result()
        assert partial.partial_success
        assert partial.to_dict()['failed_ids'] == [failing]
        # original exception type survives into the bookkeeping
        assert isinstance(result.failures[0].exception, UploadError)
        assert partial.failed[0].error is result.failures[0].exception

    @pytest.mark.asyncio
    async def test_partial_failure_logged(
        self, make_coordinator, backend_factory, make_config, monkeypatch,
    ):
        providers = _providers(2)
        failing = providers[0].service_provider
        backend = backend_factory(create_errors={failing: RuntimeError('down')})
        coordinator = make_coordinator(providers, backend)
        batch_logger = MagicMock()
        monkeypatch.setattr('dealbot.pipeline.batch.logger', batch_logger)

        await coordinator.run_batch(make_config())

        batch_logger.warning.assert_any_call(
            'batch.partial_failure',
            failed_ids=[failing],
            error_types=['StorageContextError'],
        )

    @pytest.mark.asyncio
    async def test_no_partial_failure_log_when_all_succeed(
        self, make_coordinator, storage_backend, make_config, monkeypatch,
    ):
        coordinator = make_coordinator(_providers(2), storage_backend)
        batch_logger = MagicMock()
        monkeypatch.setattr('dealbot.pipeline.batch.logger', batch_logger)

        await coordinator.run_batch(make_config())

        events = [call.args[0] for call in batch_logger.warning.call_args_list]
        assert 'batch.partial_failure' not in events

    @pytest.mark.asyncio
    async def test_create_deals_returns_only_successes(
        self, make_coordinator, backend_factory, make_config,
    ):
        providers = _providers(2)
        backend = backend_factory(create_errors={providers[0].service_provider: RuntimeError('down')})
        coordinator = make_coordinator(providers, backend)

        deals = await coordinator.create_deals_for_all_providers(make_config())

        assert [d.sp_address for d in deals] == [providers[1].service_provider]

    @pytest.mark.asyncio
    async def test_preprocessing_runs_once(self, make_coordinator, storage_backend, make_config, addons_service):
        coordinator = make_coordinator(_providers(4), storage_backend)
        addons_service.preprocess_deal = AsyncMock(wraps=addons_service.preprocess_deal)

        await coordinator.run_batch(make_config(enable_ipni=True))

        addons_service.preprocess_deal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_preprocessing_failure_contacts_no_provider(
        self, make_coordinator, storage_backend, make_config,
    ):
        coordinator = make_coordinator(_providers(2), storage_backend)
        empty = DataFile(name='empty', data=b'', size=0)

        with pytest.raises(AddonError):
            await coordinator.run_batch(make_config(enable_cdn=True, file=empty))

        assert storage_backend.calls == []

    @pytest.mark.asyncio
    async def test_empty_directory(self, make_coordinator, storage_backend, make_config):
        result = await make_coordinator([], storage_backend).run_batch(make_config())

        assert result.total_providers == 0
        assert result.deals == []
        assert result.failures == []


class TestProcessProvidersInParallel:
    @pytest.mark.parametrize('count, group_size, expected_groups', [(5, 2, 3), (4, 2, 2), (1, 10, 1)])
    @pytest.mark.asyncio
    async def test_groups_run_sequentially(self, count, group_size, expected_groups):
        active = 0
        peak = 0
        starts = []

        async def create_deal(provider, deal_input):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            starts.append(provider.service_provider)
            await asyncio.sleep(0.01)
            active -= 1
            return MagicMock(sp_address=provider.service_provider)

        orchestrator = MagicMock()
        orchestrator.create_deal = AsyncMock(side_effect=create_deal)
        coordinator = DealBatchCoordinator(orchestrator, MagicMock(), MagicMock(), MagicMock())
        providers = _providers(count)

        outcomes = await coordinator.process_providers_in_parallel(providers, MagicMock(), group_size)

        assert len(outcomes) == count
        assert all(o.success for o in outcomes)
        assert [o.provider_address for o in outcomes] == [p.service_provider for p in providers]
        assert peak == min(group_size, count)
        assert orchestrator.create_deal.await_count == count
        assert -(-count // group_size) == expected_groups

    @pytest.mark.asyncio
    async def test_exceptions_become_outcomes(self):
        providers = _providers(3)

        async def create_deal(provider, deal_input):
            if provider is providers[1]:
                raise UploadError('upload failed')
            return MagicMock()

        orchestrator = MagicMock()
        orchestrator.create_deal = AsyncMock(side_effect=create_deal)
        coordinator = DealBatchCoordinator(orchestrator, MagicMock(), MagicMock(), MagicMock())

        outcomes = await coordinator.process_providers_in_parallel(providers, MagicMock(), 3)

        assert [o.success for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, UploadError)
        assert outcomes[1].deal is None

    @pytest.mark.parametrize('value', [0, -1])
    @pytest.mark.asyncio
    async def test_invalid_concurrency(self, value):
        coordinator = DealBatchCoordinator(MagicMock(), MagicMock(), MagicMock(), MagicMock())

        with pytest.raises(ValueError, match='max_concurrency'):
            await coordinator.process_providers_in_parallel(_providers(1), MagicMock(), value)

    def test_default_concurrency_from_config(self, monkeypatch):
        monkeypatch.setattr(Config, 'DEAL_MAX_CONCURRENCY', 4)

        coordinator = DealBatchCoordinator(MagicMock(), MagicMock(), MagicMock(), MagicMock())

        assert coordinator.max_concurrency == 4


class TestDatasetAcquisition:
    @pytest.mark.asyncio
    async def test_fallback_on_primary_failure(self, data_file):
        primary = MagicMock()
        primary.fetch = AsyncMock(side_effect=ConnectionError('catalogue unreachable'))
        fallback = MagicMock()
        fallback.fetch = AsyncMock(return_value=data_file)
        coordinator = DealBatchCoordinator(MagicMock(), MagicMock(), MagicMock(), primary, fallback)

        result = await coordinator.fetch_data_file(1, 10_000)

        assert result == data_file
        fallback.fetch.assert_awaited_once_with(1, 10_000)

    @pytest.mark.asyncio
    async def test_no_fallback_reraises(self):
        primary = MagicMock()
        primary.fetch = AsyncMock(side_effect=ConnectionError('catalogue unreachable'))
        coordinator = DealBatchCoordinator(MagicMock(), MagicMock(), MagicMock(), primary)

        with pytest.raises(ConnectionError):
            await coordinator.fetch_data_file(1, 10)

    @pytest.mark.asyncio
    async def test_local_source(self, tmp_path):
        (tmp_path / 'small.bin').write_bytes(b'x' * 10)
        (tmp_path / 'nested').mkdir()
        (tmp_path / 'nested' / 'fits.bin').write_bytes(b'y' * 200)
        (tmp_path / 'huge.bin').write_bytes(b'z' * 5000)

        source = LocalDatasetSource(tmp_path)
        data_file = await source.fetch(100, 1000)

        assert data_file.name == 'fits.bin'
        assert data_file.size == 200
        assert data_file.data == b'y' * 200

    @pytest.mark.asyncio
    async def test_local_source_nothing_fits(self, tmp_path):
        (tmp_path / 'small.bin').write_bytes(b'x')

        with pytest.raises(ConfigurationError, match='within size bounds'):
            await LocalDatasetSource(tmp_path).fetch(100, 1000)

    @pytest.mark.asyncio
    async def test_build_configuration_flags(self, data_file, monkeypatch):
        monkeypatch.setattr(Config, 'ENABLE_CDN_TESTING', True)
        monkeypatch.setattr(Config, 'ENABLE_IPNI_TESTING', False)
        rng = MagicMock(spec=random.Random)
        rng.random.return_value = 0.9
        primary = MagicMock()
        primary.fetch = AsyncMock(return_value=data_file)
        coordinator = DealBatchCoordinator(MagicMock(), MagicMock(), MagicMock(), primary, rng=rng)

        configuration = await coordinator.build_configuration()

        assert configuration.enable_cdn is True
        assert configuration.enable_ipni is False
        assert configuration.data_file == data_file

    @pytest.mark.asyncio
    async def test_run_batch_builds_configuration(self, make_coordinator, storage_backend, monkeypatch):
        monkeypatch.setattr(Config, 'ENABLE_CDN_TESTING', False)
        monkeypatch.setattr(Config, 'ENABLE_IPNI_TESTING', False)

        result = await make_coordinator(_providers(1), storage_backend).run_batch()

        assert result.configuration.enable_cdn is False
        assert result.success_count == 1
