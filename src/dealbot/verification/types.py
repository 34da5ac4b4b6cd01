"""Result objects passed between the verification monitor phases."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class PieceStatus:
    """
    Piece status as reported by the provider, with first-seen timestamps.

    indexed / advertised / retrieved only ever flip from False to True while
    a monitor polls; the *_at fields record when each flip was first seen.
    """

    status: str = ''
    indexed: bool = False
    advertised: bool = False
    retrieved: bool = False
    retrieved_at: datetime | None = None
    indexed_at: datetime | None = None
    advertised_at: datetime | None = None


@dataclass
class PieceMonitoringResult:
    success: bool
    final_status: PieceStatus
    checks: int
    duration_ms: int


@dataclass
class SingleCidVerificationResult:
    verified: bool
    reason: str | None = None
    addrs: list[str] = field(default_factory=list)


@dataclass
class FailedCid:
    cid: str
    reason: str
    addrs: list[str] = field(default_factory=list)


@dataclass
class RootCidVerificationResult:
    verified: bool
    attempts: int = 0
    failed: FailedCid | None = None


@dataclass
class BlockCidsVerificationResult:
    verified: int = 0
    failed: list[FailedCid] = field(default_factory=list)


@dataclass
class IpniVerificationResult:
    """Outcome of the index lookup phase. total counts the root CID too."""

    verified: int
    unverified: int
    total: int
    root_cid_verified: bool
    duration_ms: int
    verified_at: datetime
    failed_cids: list[FailedCid] = field(default_factory=list)


@dataclass
class MonitorAndVerifyResult:
    monitoring: PieceMonitoringResult
    ipni: IpniVerificationResult
