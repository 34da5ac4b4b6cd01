"""
Dataset sources for batch runs.

Primary acquisition (e.g. a remote dataset catalogue) is supplied by the
caller; LocalDatasetSource is the on-disk fallback used when it fails.
"""

import asyncio
import random
from pathlib import Path

from ..errors import ConfigurationError
from ..logging import get_logger
from ..models.configuration import DataFile

logger = get_logger(__name__)


class LocalDatasetSource:
    """
    Picks a random file from a local directory whose size fits the bounds.

    Args:
        directory: Directory scanned recursively for candidate files
        rng: Random source (injectable for tests)
    """

    def __init__(self, directory: str | Path, rng: random.Random | None = None):
        self.directory = Path(directory)
        self._rng = rng or random.Random()

    def candidates(self, min_size: int, max_size: int) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            path
            for path in self.directory.rglob('*')
            if path.is_file() and min_size <= path.stat().st_size <= max_size
        )

    async def fetch(self, min_size: int, max_size: int) -> DataFile:
        """
        Read one matching file.

        Raises:
            ConfigurationError: No file in the directory fits [min_size, max_size]
        """
        files = await asyncio.to_thread(self.candidates, min_size, max_size)
        if not files:
            raise ConfigurationError(
                'No local dataset file within size bounds',
                context={
                    'directory': str(self.directory),
                    'min_size': min_size,
                    'max_size': max_size,
                },
            )

        path = self._rng.choice(files)
        data = await asyncio.to_thread(path.read_bytes)
        logger.info('local_dataset.selected', file_name=path.name, size=len(data))
        return DataFile(name=path.name, data=data, size=len(data))
