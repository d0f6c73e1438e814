import datetime
import logging
from dataclasses import dataclass, field
from typing import Any

from .commit import locate_commit
from .mst import MSTWalker, TraversalStats
from .records import Record, group_by_collection, to_json_compatible
from ..car.blockstore import decode_blocks
from .. import __version__

logger = logging.getLogger(__name__)

TOOL_NAME = 'atexport'


@dataclass
class CarProcessingResult:
    """Records reconstructed from one archive plus the metadata written to the manifest."""
    records: list[Record]
    did: str | None
    total_blocks: int
    decode_errors: int
    traversal: TraversalStats
    commit: Any = None
    roots: list[str] = field(default_factory=list)
    processed_at: str = ''

    @property
    def processed_blocks(self) -> int:
        return self.total_blocks - self.decode_errors

    def collections(self) -> dict[str, list[Record]]:
        return group_by_collection(self.records)

    def metadata(self) -> dict[str, Any]:
        return {
            'did': self.did,
            'total_blocks': self.total_blocks,
            'processed_blocks': self.processed_blocks,
            'decode_errors': self.decode_errors,
            'total_records': len(self.records),
            'collections': {name: len(records) for name, records in self.collections().items()},
            'roots': self.roots,
            'commit': self.commit,
            'traversal': self.traversal.to_dict(),
            'processed_by': {
                'tool': TOOL_NAME,
                'version': __version__,
                'processed_at': self.processed_at,
            },
        }


def process_car(data: bytes, *, verify: bool = False) -> CarProcessingResult:
    """Rebuild every record of a repository archive.

    The archive is decoded completely, the commit is located, the tree is walked from
    the commit's data pointer, and finally every tree node not reached from the root
    is walked as well.

    Raises:
        CarFormatError: If the archive framing is unreadable
    """
    decoded = decode_blocks(data, verify=verify)
    commit = locate_commit(decoded.store)

    walker = MSTWalker(decoded.store, commit.owner_id if commit else None)
    if commit is not None:
        walker.walk(commit.data_cid)
        logger.info(f"Root traversal found {walker.stats.records_found} records")

    walker.scan_unvisited()

    stats = walker.stats
    if stats.fallback_roots:
        logger.info(f"Fallback scan traversed {stats.fallback_roots} unreachable nodes")
    if stats.missing_blocks or stats.malformed_keys or stats.revisited_nodes:
        logger.warning(f"Traversal anomalies: {stats.missing_blocks} missing blocks, "
                       f"{stats.malformed_keys} malformed keys, {stats.revisited_nodes} revisited nodes")

    return CarProcessingResult(
        records=walker.records,
        did=commit.owner_id if commit else None,
        total_blocks=decoded.total_blocks,
        decode_errors=decoded.decode_errors,
        traversal=stats,
        commit=to_json_compatible(commit.value) if commit else None,
        roots=[root.encode() for root in decoded.roots],
        processed_at=datetime.datetime.now(datetime.UTC).isoformat(),
    )
