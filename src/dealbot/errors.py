"""
Custom exceptions and error handling for the dealbot pipeline.

Provides:
- Typed exception hierarchy mirroring where a deal can fail
  (preprocessing, storage backend, persistence, verification)
- Error context preservation for debugging
- Partial success bookkeeping for batch fan-out
"""

from dataclasses import dataclass, field
from typing import Any


class DealbotError(Exception):
    """Base exception for all dealbot errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class ConfigurationError(DealbotError):
    """Invalid or inapplicable deal / addon configuration."""

    pass


# =============================================================================
# Preprocessing Errors
# =============================================================================


class PipelineError(DealbotError):
    """Base class for preprocessing pipeline errors."""

    pass


class AddonError(PipelineError):
    """An addon transform failed. Always tagged with the addon name."""

    def __init__(
        self,
        addon_name: str,
        message: str,
        context: dict[str, Any] | None = None,
    ):
        ctx = dict(context or {})
        ctx.setdefault('addon', addon_name)
        super().__init__(message, context=ctx)
        self.addon_name = addon_name


class AddonValidationError(AddonError):
    """An addon rejected its own preprocessing result."""

    pass


# =============================================================================
# Storage Backend Errors
# =============================================================================


class BackendError(DealbotError):
    """Base class for storage backend failures."""

    error_code = 'backend_failed'


class StorageContextError(BackendError):
    """Storage context (data set) creation failed."""

    error_code = 'storage_context_failed'


class UploadError(BackendError):
    """Payload upload or piece confirmation failed."""

    error_code = 'upload_failed'


# =============================================================================
# Persistence / Verification Errors
# =============================================================================


class PersistenceError(DealbotError):
    """Deal store read or write failed. Callers log it and carry on."""

    pass


class VerificationError(DealbotError):
    """Base class for IPNI verification errors. Never leaves the monitor."""

    pass


class PieceStatusError(VerificationError):
    """Provider piece status could not be fetched or parsed."""

    pass


class IpniLookupError(VerificationError):
    """IPNI indexer lookup failed (non-200, timeout, malformed body)."""

    pass


# =============================================================================
# Partial Success Handling
# =============================================================================


@dataclass
class ItemResult:
    """Result for a single item in a batch operation."""

    item_id: str | None
    success: bool
    error: BaseException | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PartialSuccessResult:
    """
    Result of a batch operation that may partially succeed.

    Allows processing to continue even when some items fail,
    while preserving error context for debugging.
    """

    succeeded: list[ItemResult] = field(default_factory=list)
    failed: list[ItemResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    def add_success(
        self,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a successful item."""
        self.succeeded.append(
            ItemResult(item_id=item_id, success=True, data=data or {})
        )

    def add_failure(
        self,
        error: BaseException,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a failed item."""
        self.failed.append(
            ItemResult(item_id=item_id, success=False, error=error, data=data or {})
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'total_count': self.total_count,
            'all_succeeded': self.all_succeeded,
            'succeeded_ids': [r.item_id for r in self.succeeded if r.item_id],
            'failed_ids': [r.item_id for r in self.failed if r.item_id],
            'errors': [
                {'item_id': r.item_id, 'error': error_message(r.error)}
                for r in self.failed
                if r.error
            ],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def error_message(exc: BaseException) -> str:
    """Plain message of an exception, without any attached context."""
    if isinstance(exc, DealbotError):
        return exc.message
    return str(exc) or type(exc).__name__


def wrap_backend_error(
    exc: BaseException,
    stage: str,
    context: dict[str, Any] | None = None,
) -> BackendError:
    """
    Wrap a storage backend exception in our typed error hierarchy.

    The wrapped message is the original message, so callers matching on
    the backend's text keep working.

    Args:
        exc: The original exception
        stage: 'create_storage' or 'upload'
        context: Additional context for debugging

    Returns:
        Typed BackendError subclass
    """
    if isinstance(exc, BackendError):
        return exc

    ctx = context or {}
    ctx['stage'] = stage
    ctx['error_type'] = type(exc).__name__

    if stage == 'create_storage':
        return StorageContextError(error_message(exc), context=ctx)
    elif stage == 'upload':
        return UploadError(error_message(exc), context=ctx)
    else:
        return BackendError(error_message(exc), context=ctx)


def wrap_persistence_error(
    exc: BaseException,
    context: dict[str, Any] | None = None,
) -> PersistenceError:
    """Wrap a database driver exception as PersistenceError."""
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__
    return PersistenceError(f"Deal store error: {exc}", context=ctx)
