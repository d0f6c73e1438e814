"""CAR (Content Addressable aRchive) v1 framing.

A CAR file is a length-prefixed DAG-CBOR header followed by sections::

    varint(len(header)) | header{version: 1, roots: [CID]}
    varint(len(cid) + len(payload)) | cid | payload
    ...

Only the framing is handled here; payload decoding belongs to the block store.
"""
import logging
from dataclasses import dataclass
from typing import Iterator

from cbrrr import CID, decode_dag_cbor

from ..errors import CarFormatError
from ..utils.varint import decode_varint

logger = logging.getLogger(__name__)

CIDV0_PREFIX = b'\x12\x20'
CIDV0_LENGTH = 34


def read_cid(data: bytes, offset: int) -> tuple[CID, int]:
    """Parse a binary CID starting at offset.

    Supports CIDv0 (a bare sha2-256 multihash) and CIDv1
    (version, codec, hash function, digest length, digest).

    Returns:
        Tuple of (cid, bytes_consumed)

    Raises:
        ValueError: If the CID is truncated or has an unknown version
    """
    if data[offset:offset + 2] == CIDV0_PREFIX:
        if offset + CIDV0_LENGTH > len(data):
            raise ValueError("Truncated CIDv0")
        return CID(bytes(data[offset:offset + CIDV0_LENGTH])), CIDV0_LENGTH

    position = offset
    version, n = decode_varint(data, position)
    position += n
    if version != 1:
        raise ValueError(f"Unsupported CID version: {version}")

    _codec, n = decode_varint(data, position)
    position += n
    _hash_code, n = decode_varint(data, position)
    position += n
    digest_length, n = decode_varint(data, position)
    position += n

    end = position + digest_length
    if end > len(data):
        raise ValueError("Truncated CID digest")

    return CID(bytes(data[offset:end])), end - offset


@dataclass(frozen=True)
class CarHeader:
    version: int
    roots: list[CID]


class CarReader:
    """Single-pass reader over the sections of an in-memory CAR file.

    The header is parsed eagerly on construction; sections are parsed lazily by
    iterating blocks(). Any framing problem raises CarFormatError, which aborts the
    whole decode since later section boundaries cannot be trusted.
    """

    def __init__(self, data: bytes):
        self._data = data
        self.header, self._body_offset = self._read_header()

    @property
    def roots(self) -> list[CID]:
        return self.header.roots

    def _read_header(self) -> tuple[CarHeader, int]:
        data = self._data
        if not data:
            raise CarFormatError("Empty archive")

        try:
            header_length, n = decode_varint(data, 0)
        except ValueError as e:
            raise CarFormatError(f"Unreadable header length: {e}", 0) from e

        end = n + header_length
        if header_length == 0 or end > len(data):
            raise CarFormatError(f"Truncated header: declared {header_length} bytes", n)

        try:
            header = decode_dag_cbor(bytes(data[n:end]))
        except Exception as e:
            raise CarFormatError(f"Unreadable header: {e}", n) from e

        if not isinstance(header, dict) or not isinstance(header.get('roots', []), list):
            raise CarFormatError("Malformed header", n)

        version = header.get('version')
        if version != 1:
            raise CarFormatError(f"Unsupported CAR version: {version}", n)

        roots = [root for root in header.get('roots', []) if isinstance(root, CID)]
        return CarHeader(version, roots), end

    def blocks(self) -> Iterator[tuple[CID, bytes]]:
        """Yield (cid, payload) for every section in file order."""
        data = self._data
        offset = self._body_offset

        while offset < len(data):
            try:
                section_length, n = decode_varint(data, offset)
            except ValueError as e:
                raise CarFormatError(f"Unreadable section length: {e}", offset) from e

            start = offset + n
            end = start + section_length
            if end > len(data):
                raise CarFormatError(
                    f"Truncated section: declared {section_length} bytes, {len(data) - start} available",
                    offset)

            try:
                cid, cid_length = read_cid(data, start)
            except ValueError as e:
                raise CarFormatError(f"Unreadable CID: {e}", start) from e

            if cid_length > section_length:
                raise CarFormatError("CID overruns its section", start)

            yield cid, bytes(data[start + cid_length:end])
            offset = end


@dataclass
class CarFile:
    roots: list[CID]
    blocks: Iterator[tuple[CID, bytes]]


def read_car(data: bytes) -> CarFile:
    """Parse the header of data and return its roots with a one-shot block iterator.

    Raises:
        CarFormatError: If the header is unreadable; section errors are raised while iterating
    """
    reader = CarReader(data)
    return CarFile(reader.roots, reader.blocks())
