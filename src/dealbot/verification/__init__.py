"""Background IPNI verification: monitor, HTTP clients and task supervision."""

from .ipni_client import IpniIndexerClient, extract_provider_addrs
from .monitor import IpniVerificationMonitor, MonitorSettings, derive_ipni_status
from .pdp_client import PdpServerClient
from .supervisor import TaskFailure, TaskSupervisor
from .types import (
    IpniVerificationResult,
    MonitorAndVerifyResult,
    PieceMonitoringResult,
    PieceStatus,
)

__all__ = [
    'IpniIndexerClient',
    'IpniVerificationMonitor',
    'IpniVerificationResult',
    'MonitorAndVerifyResult',
    'MonitorSettings',
    'PdpServerClient',
    'PieceMonitoringResult',
    'PieceStatus',
    'TaskFailure',
    'TaskSupervisor',
    'derive_ipni_status',
    'extract_provider_addrs',
]
