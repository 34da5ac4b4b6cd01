"""
Configuration management for the dealbot pipeline.

Loads settings from environment variables with sensible defaults. Timing
values are expressed in seconds so they can be handed straight to asyncio.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Configuration settings loaded from environment."""

    # Persistence
    DATABASE_URL: str = os.getenv('DATABASE_URL', '')

    # Wallet used for every deal
    WALLET_ADDRESS: str = os.getenv('WALLET_ADDRESS', '')

    # Addon testing switches (each run enables an addon with probability 0.5)
    ENABLE_CDN_TESTING: bool = _env_bool('ENABLE_CDN_TESTING')
    ENABLE_IPNI_TESTING: bool = _env_bool('ENABLE_IPNI_TESTING')

    # Batch fan-out
    DEAL_MAX_CONCURRENCY: int = int(os.getenv('DEAL_MAX_CONCURRENCY', '10'))

    # Dataset sizing (bytes)
    MIN_UPLOAD_SIZE: int = int(os.getenv('MIN_UPLOAD_SIZE', '127'))
    MAX_UPLOAD_SIZE: int = int(os.getenv('MAX_UPLOAD_SIZE', str(200 * 1024 * 1024)))
    LOCAL_DATASET_PATH: str = os.getenv('LOCAL_DATASET_PATH', 'datasets')

    # IPNI indexer
    IPNI_INDEXER_URL: str = os.getenv('IPNI_INDEXER_URL', 'https://filecoinpin.contact')
    IPNI_QUERY_TIMEOUT_SECONDS: float = float(os.getenv('IPNI_QUERY_TIMEOUT_SECONDS', '5'))

    # Verification monitor timings
    IPNI_POLL_INTERVAL_SECONDS: float = float(os.getenv('IPNI_POLL_INTERVAL_SECONDS', '2.5'))
    IPNI_POLL_TIMEOUT_SECONDS: float = float(os.getenv('IPNI_POLL_TIMEOUT_SECONDS', '600'))
    IPNI_LOOKUP_TIMEOUT_SECONDS: float = float(os.getenv('IPNI_LOOKUP_TIMEOUT_SECONDS', '3600'))
    IPNI_VERIFICATION_DELAY_SECONDS: float = float(
        os.getenv('IPNI_VERIFICATION_DELAY_SECONDS', '30')
    )
    IPNI_RETRY_INTERVAL_SECONDS: float = float(os.getenv('IPNI_RETRY_INTERVAL_SECONDS', '10'))
    IPNI_ROOT_CID_MAX_RETRIES: int = int(os.getenv('IPNI_ROOT_CID_MAX_RETRIES', '5'))

    # Provider PDP endpoint
    PDP_REQUEST_TIMEOUT_SECONDS: float = float(os.getenv('PDP_REQUEST_TIMEOUT_SECONDS', '10'))

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not cls.DATABASE_URL:
            missing.append('DATABASE_URL')
        if not cls.WALLET_ADDRESS:
            missing.append('WALLET_ADDRESS')
        return missing


# Singleton config instance
config = Config()
