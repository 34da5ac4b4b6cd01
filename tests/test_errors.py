"""
Tests for the errors module.
"""

import pytest

from dealbot.errors import (
    AddonError,
    AddonValidationError,
    BackendError,
    ConfigurationError,
    DealbotError,
    IpniLookupError,
    PartialSuccessResult,
    PersistenceError,
    PieceStatusError,
    PipelineError,
    StorageContextError,
    UploadError,
    VerificationError,
    error_message,
    wrap_backend_error,
    wrap_persistence_error,
)


class TestErrorHierarchy:
    """Test error class hierarchy."""

    def test_base_error_with_context(self):
        error = DealbotError('Something went wrong', context={'key': 'value', 'count': 42})

        assert error.message == 'Something went wrong'
        assert error.context == {'key': 'value', 'count': 42}
        assert 'context=' in str(error)

    def test_base_error_without_context(self):
        error = DealbotError('Simple error')

        assert error.context == {}
        assert str(error) == 'Simple error'

    def test_pipeline_errors_inherit(self):
        assert issubclass(AddonError, PipelineError)
        assert issubclass(AddonValidationError, AddonError)
        assert issubclass(PipelineError, DealbotError)
        assert issubclass(ConfigurationError, DealbotError)

    def test_backend_and_verification_errors_inherit(self):
        assert issubclass(StorageContextError, BackendError)
        assert issubclass(UploadError, BackendError)
        assert issubclass(PieceStatusError, VerificationError)
        assert issubclass(IpniLookupError, VerificationError)
        assert issubclass(PersistenceError, DealbotError)

    def test_addon_error_carries_addon_name(self):
        error = AddonError('cdn', 'CDN validation failed: data is empty')

        assert error.addon_name == 'cdn'
        assert error.context['addon'] == 'cdn'
        assert error.message == 'CDN validation failed: data is empty'

    def test_backend_error_codes(self):
        assert StorageContextError('x').error_code == 'storage_context_failed'
        assert UploadError('x').error_code == 'upload_failed'
        assert BackendError('x').error_code == 'backend_failed'


class TestErrorMessage:
    def test_dealbot_error_drops_context(self):
        error = UploadError('boom', context={'stage': 'upload'})
        assert error_message(error) == 'boom'

    def test_plain_exception(self):
        assert error_message(RuntimeError('broken pipe')) == 'broken pipe'

    def test_empty_exception_uses_type_name(self):
        assert error_message(TimeoutError()) == 'TimeoutError'


class TestWrapBackendError:
    def test_create_storage_stage(self):
        wrapped = wrap_backend_error(RuntimeError('provider offline'), 'create_storage')

        assert isinstance(wrapped, StorageContextError)
        assert wrapped.message == 'provider offline'
        assert wrapped.context['stage'] == 'create_storage'
        assert wrapped.context['error_type'] == 'RuntimeError'

    def test_upload_stage_keeps_original_message(self):
        wrapped = wrap_backend_error(ConnectionError('connection reset'), 'upload', {'sp': '0x1'})

        assert isinstance(wrapped, UploadError)
        assert wrapped.message == 'connection reset'
        assert wrapped.context['sp'] == '0x1'

    def test_unknown_stage(self):
        wrapped = wrap_backend_error(ValueError('odd'), 'elsewhere')
        assert type(wrapped) is BackendError

    def test_existing_backend_error_passes_through(self):
        original = UploadError('already typed')
        assert wrap_backend_error(original, 'create_storage') is original


class TestWrapPersistenceError:
    def test_wraps_driver_error(self):
        wrapped = wrap_persistence_error(OSError('connection refused'), {'deal_id': 'abc'})

        assert isinstance(wrapped, PersistenceError)
        assert 'connection refused' in wrapped.message
        assert wrapped.context['deal_id'] == 'abc'
        assert wrapped.context['error_type'] == 'OSError'


class TestPartialSuccessResult:
    def test_all_succeeded(self):
        result = PartialSuccessResult()
        result.add_success(item_id='0x1')
        result.add_success(item_id='0x2')

        assert result.success_count == 2
        assert result.failure_count == 0
        assert result.all_succeeded
        assert not result.partial_success

    def test_partial_success(self):
        result = PartialSuccessResult()
        result.add_success(item_id='0x1')
        result.add_failure(UploadError('upload failed'), item_id='0x2')

        assert result.partial_success
        assert result.total_count == 2

    def test_to_dict(self):
        result = PartialSuccessResult()
        result.add_success(item_id='0x1')
        result.add_failure(StorageContextError('no capacity', context={'x': 1}), item_id='0x2')

        data = result.to_dict()

        assert data['success_count'] == 1
        assert data['failed_ids'] == ['0x2']
        assert data['errors'] == [{'item_id': '0x2', 'error': 'no capacity'}]

    @pytest.mark.parametrize('count', [0, 3])
    def test_empty_failures(self, count):
        result = PartialSuccessResult()
        for i in range(count):
            result.add_success(item_id=str(i))
        assert result.all_succeeded
