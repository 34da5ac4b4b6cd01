"""
Deal model and lifecycle enums.

Deal is the central persisted entity. It is created by the orchestrator for
one provider, mutated during the synchronous upload phase, and later by the
IPNI verification monitor, which owns only the ipni_* sub-state.

Key design decisions:
- id is a UUIDv7 so records sort by creation time
- Primary status and verification status are separate state machines;
  both only move forward (advance_status / advance_ipni_status)
- metadata is namespaced by addon name (ServiceType value)
- storage_provider is a loaded relation and is never persisted with the deal
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from ..utils import utcnow, uuid7
from .provider import StorageProvider


class ServiceType(str, Enum):
    """Addon names; also the metadata namespace keys on a Deal."""

    DIRECT_SP = 'direct_sp'
    CDN = 'cdn'
    IPFS_PIN = 'ipfs_pin'


class DealStatus(str, Enum):
    """Primary deal lifecycle. FAILED is reachable from any state."""

    PENDING = 'pending'
    UPLOADED = 'uploaded'
    PIECE_ADDED = 'piece_added'
    DEAL_CREATED = 'deal_created'
    FAILED = 'failed'


class IpniStatus(str, Enum):
    """Verification sub-state driven by the IPNI monitor."""

    PENDING = 'pending'
    SP_INDEXED = 'sp_indexed'
    SP_ADVERTISED = 'sp_advertised'
    SP_RECEIVED_RETRIEVE_REQUEST = 'sp_received_retrieve_request'
    VERIFIED = 'verified'
    FAILED = 'failed'


_DEAL_STATUS_ORDER = {
    DealStatus.PENDING: 0,
    DealStatus.UPLOADED: 1,
    DealStatus.PIECE_ADDED: 2,
    DealStatus.DEAL_CREATED: 3,
}

_IPNI_STATUS_ORDER = {
    IpniStatus.PENDING: 0,
    IpniStatus.SP_INDEXED: 1,
    IpniStatus.SP_ADVERTISED: 2,
    IpniStatus.SP_RECEIVED_RETRIEVE_REQUEST: 3,
    IpniStatus.VERIFIED: 4,
}

DEAL_TERMINAL_STATES = frozenset({DealStatus.DEAL_CREATED, DealStatus.FAILED})
IPNI_TERMINAL_STATES = frozenset({IpniStatus.VERIFIED, IpniStatus.FAILED})


def can_advance_status(current: DealStatus, target: DealStatus) -> bool:
    """True when moving current → target keeps the lifecycle monotonic."""
    if current in DEAL_TERMINAL_STATES:
        return False
    if target == DealStatus.FAILED:
        return True
    return _DEAL_STATUS_ORDER[target] > _DEAL_STATUS_ORDER[current]


def can_advance_ipni_status(current: IpniStatus | None, target: IpniStatus) -> bool:
    """Same rule for the verification sub-state; None means not yet tracked."""
    if current is None:
        return True
    if current in IPNI_TERMINAL_STATES:
        return False
    if target == IpniStatus.FAILED:
        return True
    return _IPNI_STATUS_ORDER[target] > _IPNI_STATUS_ORDER[current]


class Deal(BaseModel):
    """
    A storage deal between the automation wallet and one storage provider.

    Timing metrics are whole milliseconds; throughput is bytes per second.
    """

    id: UUID = Field(default_factory=uuid7, description='Deal primary key (UUIDv7)')

    # Parties and payload
    sp_address: str = Field(..., description='Storage provider address')
    wallet_address: str = Field(default='', description='Client wallet address')
    file_name: str = Field(..., description='Name of the uploaded data file')
    file_size: int = Field(..., ge=0, description='Size of the processed payload in bytes')

    # Provider-side identifiers
    piece_cid: str | None = None
    data_set_id: int | str | None = None
    piece_id: int | str | None = None
    piece_size: int | None = None
    transaction_hash: str | None = None

    status: DealStatus = Field(default=DealStatus.PENDING)

    # Addon bookkeeping
    metadata: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description='addon name → addon-specific metadata'
    )
    service_types: list[ServiceType] = Field(
        default_factory=list, description='Applied addons in execution order'
    )

    # Lifecycle timestamps
    upload_start_time: datetime | None = None
    upload_end_time: datetime | None = None
    piece_added_time: datetime | None = None
    deal_confirmed_time: datetime | None = None

    # Derived metrics
    ingest_latency_ms: int | None = None
    chain_latency_ms: int | None = None
    deal_latency_ms: int | None = None
    ingest_throughput_bps: int | None = None

    # Failure details
    error_message: str | None = None
    error_code: str | None = None
    retry_count: int = 0

    # IPNI verification sub-state
    ipni_status: IpniStatus | None = None
    ipni_indexed_at: datetime | None = None
    ipni_advertised_at: datetime | None = None
    ipni_retrieved_at: datetime | None = None
    ipni_verified_at: datetime | None = None
    ipni_time_to_index_ms: int | None = None
    ipni_time_to_advertise_ms: int | None = None
    ipni_time_to_retrieve_ms: int | None = None
    ipni_time_to_verify_ms: int | None = None
    ipni_verified_cids_count: int | None = None
    ipni_unverified_cids_count: int | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Loaded relation, not a column
    storage_provider: StorageProvider | None = Field(default=None, exclude=True)

    def advance_status(self, status: DealStatus) -> bool:
        """
        Move the primary status forward.

        Returns False (and leaves the deal untouched) when the move would
        regress the lifecycle or overwrite a terminal state.
        """
        if status == self.status or not can_advance_status(self.status, status):
            return False
        self.status = status
        self.updated_at = utcnow()
        return True

    def advance_ipni_status(self, status: IpniStatus) -> bool:
        """Move the verification status forward; see advance_status()."""
        if status == self.ipni_status or not can_advance_ipni_status(self.ipni_status, status):
            return False
        self.ipni_status = status
        self.updated_at = utcnow()
        return True

    def mark_failed(self, message: str, code: str | None = None) -> bool:
        """
        Divert the primary lifecycle to FAILED and record why.

        Returns False, leaving the error fields untouched, when the deal
        cannot move to FAILED (already created, or already failed).
        """
        if not self.advance_status(DealStatus.FAILED):
            return False
        self.error_message = message
        self.error_code = code
        return True

    def addon_metadata(self, addon_name: str) -> dict[str, Any]:
        return self.metadata.get(addon_name) or {}

    def to_record(self) -> dict[str, Any]:
        """Flatten to column values for the deals table."""
        record = self.model_dump(mode='python', exclude={'storage_provider'})
        record['status'] = self.status.value
        record['ipni_status'] = self.ipni_status.value if self.ipni_status else None
        record['service_types'] = [s.value for s in self.service_types]
        return record
