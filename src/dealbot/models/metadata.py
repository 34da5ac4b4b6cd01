"""
Per-addon metadata models.

Each addon stores one of these under its own name in the preprocessing
context; the Deal keeps them as plain dicts (model_dump) in its metadata
column.
"""

from typing import Literal

from pydantic import BaseModel, Field


class DirectMetadata(BaseModel):
    """Pass-through storage: nothing beyond a marker."""

    type: Literal['direct'] = 'direct'


class CdnMetadata(BaseModel):
    """CDN retrieval enabled for the data set."""

    enabled: bool = True
    provider: str = 'fil-beam'


class IpniMetadata(BaseModel):
    """Result of the CAR conversion, used later for IPNI verification."""

    enabled: bool = True
    root_cid: str = Field(..., description='CID of the first block, announced as CAR root')
    block_cids: list[str] = Field(default_factory=list)
    block_count: int = 0
    car_size: int = 0
    original_size: int = 0


AddonMetadata = DirectMetadata | CdnMetadata | IpniMetadata
