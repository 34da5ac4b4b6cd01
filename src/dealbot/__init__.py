"""
Dealbot Pipeline

Automated storage deal creation across many storage providers: pluggable
payload preprocessing (direct, CDN, IPNI), per-deal lifecycle orchestration
with bounded-concurrency fan-out, and background IPNI verification.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .addons import (
    AddonRegistry,
    CdnAddonStrategy,
    DealAddonsService,
    DirectAddonStrategy,
    IpniAddonStrategy,
)
from .pipeline import (
    BatchDealResult,
    DealBatchCoordinator,
    DealOrchestrator,
    ProviderFailure,
)
from .verification import (
    IpniIndexerClient,
    IpniVerificationMonitor,
    MonitorSettings,
    TaskSupervisor,
)
from .clients import PostgresDealStore
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .errors import (
    DealbotError,
    ConfigurationError,
    PipelineError,
    AddonError,
    BackendError,
    PersistenceError,
    VerificationError,
    PartialSuccessResult,
)
from .models import (
    Deal,
    DealConfiguration,
    DealStatus,
    IpniStatus,
    ServiceType,
)
from .runtime import DealbotRuntime, dealbot_runtime

__all__ = [
    # Version
    '__version__',
    # Addons
    'AddonRegistry',
    'CdnAddonStrategy',
    'DealAddonsService',
    'DirectAddonStrategy',
    'IpniAddonStrategy',
    # Pipeline
    'BatchDealResult',
    'DealBatchCoordinator',
    'DealOrchestrator',
    'ProviderFailure',
    # Verification
    'IpniIndexerClient',
    'IpniVerificationMonitor',
    'MonitorSettings',
    'TaskSupervisor',
    # Clients
    'PostgresDealStore',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'DealbotError',
    'ConfigurationError',
    'PipelineError',
    'AddonError',
    'BackendError',
    'PersistenceError',
    'VerificationError',
    'PartialSuccessResult',
    # Models
    'Deal',
    'DealConfiguration',
    'DealStatus',
    'IpniStatus',
    'ServiceType',
    # Runtime
    'DealbotRuntime',
    'dealbot_runtime',
]
