"""In-memory block store built from a CAR archive.

decode_blocks() walks the archive framing once and decodes every payload as DAG-CBOR.
A payload that cannot be decoded does not abort the pass: the block is kept with
value DECODE_ERROR and counted, so that records reachable through the remaining
blocks can still be reconstructed.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from cbrrr import CID, decode_dag_cbor

from .reader import read_car

logger = logging.getLogger(__name__)

# multicodec/multihash codes used by atproto repositories
SHA2_256 = 0x12


class _DecodeError:
    """Sentinel stored as the value of a block whose payload failed to decode."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'DECODE_ERROR'

    def __bool__(self):
        return False


DECODE_ERROR = _DecodeError()


@dataclass(frozen=True)
class Block:
    """One (CID, payload) unit of the archive together with its decoded value."""
    cid: CID
    data: bytes = field(repr=False)
    value: Any

    @property
    def decoded(self) -> bool:
        return self.value is not DECODE_ERROR


@dataclass
class BlockStoreResult:
    """Outcome of a decode pass.

    Attributes:
        store: Blocks keyed by CID, in archive order
        roots: Root CIDs declared by the archive header
        total_blocks: Number of sections read from the archive
        decode_errors: Number of blocks whose payload could not be decoded
    """
    store: dict[CID, Block]
    roots: list[CID]
    total_blocks: int = 0
    decode_errors: int = 0

    @property
    def decoded_blocks(self) -> int:
        return self.total_blocks - self.decode_errors

    def get_value(self, cid: CID) -> Any:
        """Return the decoded value for cid, or None when the block is absent."""
        block = self.store.get(cid)
        if block is None:
            return None
        return block.value


def digest_matches(cid: CID, data: bytes) -> bool:
    """Check a sha2-256 CID against its payload; other hash functions are not checked."""
    cid_bytes = bytes(cid)
    if cid_bytes[:2] == b'\x12\x20':
        return cid_bytes[2:] == hashlib.sha256(data).digest()

    # CIDv1: version, codec, then the multihash; all three prefixes are one byte for sha2-256
    multihash = cid_bytes[2:] if cid_bytes[1] < 0x80 else cid_bytes[3:]
    if multihash[:1] != bytes([SHA2_256]):
        return True
    return multihash[2:] == hashlib.sha256(data).digest()


def decode_blocks(data: bytes, *, verify: bool = False) -> BlockStoreResult:
    """Decode every block of a CAR archive into an in-memory store.

    Args:
        data: The complete archive bytes
        verify: When True, a block whose sha2-256 digest does not match its CID is
                treated like an undecodable block

    Returns:
        BlockStoreResult with the store and counters

    Raises:
        CarFormatError: If the archive framing is unreadable
    """
    car = read_car(data)
    result = BlockStoreResult(store={}, roots=list(car.roots))

    for cid, payload in car.blocks:
        result.total_blocks += 1

        if verify and not digest_matches(cid, payload):
            logger.debug(f"Digest mismatch for block {cid}")
            result.decode_errors += 1
            result.store[cid] = Block(cid, payload, DECODE_ERROR)
            continue

        try:
            value = decode_dag_cbor(payload)
        except Exception as e:
            logger.debug(f"Failed to decode block {cid}: {e}")
            result.decode_errors += 1
            result.store[cid] = Block(cid, payload, DECODE_ERROR)
        else:
            result.store[cid] = Block(cid, payload, value)

    logger.info(f"Decoded {result.decoded_blocks} of {result.total_blocks} blocks "
                f"({result.decode_errors} errors)")
    return result
