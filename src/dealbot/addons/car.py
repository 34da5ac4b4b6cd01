"""
Minimal CARv1 writer for the IPNI addon.

Splits a payload into fixed-size raw blocks, addresses each block with a
CIDv1 (raw codec, sha2-256 multihash, base32 multibase) and writes them into
a single-root CAR archive whose root is the first block.

CIDs and varints come from ``multiformats``; the header is DAG-CBOR via
``dag_cbor``. Only the section framing lives here: no DAG building, no
CARv2 index, no decoding.
"""

from dataclasses import dataclass

import dag_cbor
from multiformats import CID, multihash, varint

MAX_BLOCK_SIZE = 1024 * 1024

CAR_VERSION = 1


def cid_for_block(block: bytes) -> CID:
    """CIDv1 of a raw block, rendered in base32."""
    return CID('base32', 1, 'raw', multihash.digest(block, 'sha2-256'))


@dataclass
class CarBlock:
    cid: CID
    data: bytes


@dataclass
class CarDataFile:
    """A CAR archive plus the identifiers IPNI verification needs."""

    car_data: bytes
    root_cid: CID
    block_cids: list[CID]
    block_count: int
    total_block_size: int

    @property
    def car_size(self) -> int:
        return len(self.car_data)


def encode_header(root: CID) -> bytes:
    header = dag_cbor.encode({'roots': [root], 'version': CAR_VERSION})
    return varint.encode(len(header)) + header


def encode_section(block: CarBlock) -> bytes:
    section = bytes(block.cid) + block.data
    return varint.encode(len(section)) + section


def split_blocks(data: bytes, block_size: int = MAX_BLOCK_SIZE) -> list[CarBlock]:
    return [
        CarBlock(cid=cid_for_block(chunk), data=chunk)
        for chunk in (data[i:i + block_size] for i in range(0, len(data), block_size))
    ]


def convert_to_car(data: bytes, block_size: int = MAX_BLOCK_SIZE) -> CarDataFile:
    """
    Convert a payload to a CARv1 archive rooted at its first block.

    Raises:
        ValueError: if the payload is empty
    """
    if not data:
        raise ValueError('cannot convert empty data to CAR')

    blocks = split_blocks(data, block_size)
    root = blocks[0].cid

    car_data = encode_header(root) + b''.join(encode_section(block) for block in blocks)

    return CarDataFile(
        car_data=car_data,
        root_cid=root,
        block_cids=[b.cid for b in blocks],
        block_count=len(blocks),
        total_block_size=sum(len(b.data) for b in blocks),
    )
