"""
Deal configuration and preprocessing data structures.

DealConfiguration is the immutable input of one batch run. The execution
context and addon results only live for the duration of one preprocessing
run; DealPreprocessingResult is what the orchestrator consumes per provider.
"""

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from .deal import ServiceType
from .metadata import AddonMetadata


class DataFile(BaseModel):
    """A data payload to store."""

    model_config = ConfigDict(frozen=True)

    name: str
    data: bytes
    size: int = Field(..., ge=0)


class DealConfiguration(BaseModel):
    """Payload plus addon feature flags. Created once per batch run."""

    model_config = ConfigDict(frozen=True)

    data_file: DataFile
    enable_cdn: bool = False
    enable_ipni: bool = False


# Well-known provider metadata keys understood by the storage network
WITH_CDN = 'withCDN'
WITH_IPFS_INDEXING = 'withIPFSIndexing'
IPFS_ROOT_CID = 'ipfsRootCID'


class ProviderConfig(BaseModel):
    """
    Provider-visible configuration, split by where it is applied.

    data_set_metadata goes to storage context creation; piece_metadata goes
    with the upload.
    """

    data_set_metadata: dict[str, str] = Field(default_factory=dict)
    piece_metadata: dict[str, str] = Field(default_factory=dict)


@dataclass
class AddonResult:
    """What one addon hands back to the pipeline."""

    data: bytes
    size: int
    metadata: AddonMetadata
    original_data: bytes | None = None


@dataclass
class AddonExecutionContext:
    """Mutable state threaded through the addons of one preprocessing run."""

    current_data: DataFile
    configuration: DealConfiguration
    accumulated_metadata: dict[str, AddonMetadata] = field(default_factory=dict)


@dataclass
class DealPreprocessingResult:
    """Output of the preprocessing pipeline, shared by every provider of a batch."""

    processed_data: DataFile
    metadata: dict[str, AddonMetadata]
    provider_config: ProviderConfig
    applied_addons: list[ServiceType] = field(default_factory=list)

    def metadata_dump(self) -> dict[str, dict]:
        """Metadata as plain dicts, ready to be stored on a Deal."""
        return {name: meta.model_dump() for name, meta in self.metadata.items()}
