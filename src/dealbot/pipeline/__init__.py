"""Deal creation: single-deal orchestration and batch fan-out."""

from .batch import BatchDealResult, DealBatchCoordinator, ProviderFailure, ProviderOutcome
from .orchestrator import DealOrchestrator

__all__ = [
    'BatchDealResult',
    'DealBatchCoordinator',
    'DealOrchestrator',
    'ProviderFailure',
    'ProviderOutcome',
]
