"""Reconstruction of repository records from Merkle Search Tree blocks.

Keys are not stored in full. Each entry of an MST node carries ``p`` (the number of
leading bytes shared with the previous key of the same node) and ``k`` (the remaining
suffix), so keys can only be rebuilt by processing a node's entries in order while
carrying the previous full key forward. Record keys have the form
``<collection>/<record key>``.

Node layout::

    {'l': CID | None,                 # left subtree
     'r': CID | None,                 # right subtree (non-standard, tolerated)
     'e': [{'p': int, 'k': bytes, 'v': CID, 't': CID | None}, ...]}

The walk uses an explicit stack and a visited set, so deep or cyclic archives can
neither overflow the interpreter stack nor loop forever.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any

from cbrrr import CID

from .classify import ValueKind, classify
from .records import Record, make_uri, split_key
from ..car.blockstore import Block, DECODE_ERROR

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = 'unknown'


@dataclass
class TraversalStats:
    """Anomalies and totals observed while walking the tree.

    None of the anomalies stops the walk; the offending entry or pointer is skipped.
    """
    visited_nodes: int = 0
    fallback_roots: int = 0
    records_found: int = 0
    duplicate_records: int = 0
    missing_blocks: int = 0
    undecodable_blocks: int = 0
    malformed_entries: int = 0
    malformed_keys: int = 0
    revisited_nodes: int = 0
    unclassified_values: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class MSTWalker:
    """Walks MST nodes of a block store and collects the records they reference.

    Records are deduplicated by CID; the first record found for a CID is kept, so
    records reached from the commit root take precedence over those found by
    scan_unvisited().
    """

    def __init__(self, store: dict[CID, Block], owner_id: str | None = None):
        self._store = store
        self._owner_id = owner_id or UNKNOWN_OWNER
        self._visited: set[CID] = set()
        self._records: dict[CID, Record] = {}
        self.stats = TraversalStats()

    @property
    def records(self) -> list[Record]:
        return list(self._records.values())

    @property
    def visited(self) -> frozenset[CID]:
        return frozenset(self._visited)

    def walk(self, root_cid: CID) -> None:
        """Traverse the tree rooted at root_cid (normally the commit's data pointer)."""
        node = self._resolve(root_cid)
        if node is None:
            logger.warning(f"MST root {root_cid} is not available in the archive")
            return
        if classify(node) != ValueKind.MST_NODE:
            self.stats.unclassified_values += 1
            logger.warning(f"MST root {root_cid} does not look like a tree node")
            return
        self.traverse(node, b'', root_cid)

    def traverse(self, node: dict, prefix: bytes = b'', cid: CID | None = None) -> None:
        """Traverse node and everything below it.

        Args:
            node: A decoded MST node
            prefix: Key that entry prefixes of this node are resolved against
            cid: CID of node, used for cycle detection; None for a detached value
        """
        stack: list[tuple[CID | None, dict, bytes]] = [(cid, node, prefix)]

        while stack:
            node_cid, current, current_prefix = stack.pop()
            if node_cid is not None:
                if node_cid in self._visited:
                    self.stats.revisited_nodes += 1
                    continue
                self._visited.add(node_cid)

            self.stats.visited_nodes += 1
            children = self._expand(current, current_prefix)
            # Reversed so that children are walked left to right
            stack.extend(reversed(children))

    def scan_unvisited(self) -> None:
        """Traverse every tree node the walks so far have not reached.

        Incremental exports and partial syncs may carry subtrees that are unreachable
        from the declared root; without this pass their records would be dropped.
        """
        for cid, block in self._store.items():
            if cid in self._visited or classify(block.value) != ValueKind.MST_NODE:
                continue
            self.stats.fallback_roots += 1
            logger.debug(f"Traversing unreachable MST node {cid}")
            self.traverse(block.value, b'', cid)

    def _expand(self, node: dict, prefix: bytes) -> list[tuple[CID, dict, bytes]]:
        """Emit the records held by node and return its subtrees, in key order."""
        children: list[tuple[CID, dict, bytes]] = []

        self._push_subtree(children, node.get('l'), prefix)

        entries = node.get('e')
        if isinstance(entries, list):
            running_key = prefix
            for entry in entries:
                if not isinstance(entry, dict):
                    self.stats.malformed_entries += 1
                    continue

                key = self._entry_key(entry, running_key, prefix)
                if key is None:
                    self.stats.malformed_entries += 1
                    continue
                running_key = key

                value_cid = entry.get('v')
                if isinstance(value_cid, CID):
                    value = self._resolve(value_cid)
                    # None was already counted by _resolve
                    if value is not None:
                        kind = classify(value)
                        if kind == ValueKind.MST_NODE:
                            children.append((value_cid, value, key))
                        elif kind == ValueKind.RECORD:
                            self._emit(value_cid, key, value)
                        else:
                            self.stats.unclassified_values += 1
                else:
                    self.stats.malformed_entries += 1

                self._push_subtree(children, entry.get('t'), prefix)

        self._push_subtree(children, node.get('r'), prefix)
        return children

    @staticmethod
    def _entry_key(entry: dict, running_key: bytes, prefix: bytes) -> bytes | None:
        suffix = entry.get('k')
        if isinstance(suffix, str):
            suffix = suffix.encode('utf-8')
        elif not isinstance(suffix, bytes):
            return None

        shared = entry.get('p')
        if shared is None:
            return prefix + suffix
        if not isinstance(shared, int) or isinstance(shared, bool) or shared < 0:
            return None
        return running_key[:shared] + suffix

    def _push_subtree(self, children: list[tuple[CID, dict, bytes]], pointer: Any, prefix: bytes) -> None:
        if not isinstance(pointer, CID):
            return
        value = self._resolve(pointer)
        if value is None:
            return
        if classify(value) == ValueKind.MST_NODE:
            children.append((pointer, value, prefix))
        else:
            self.stats.unclassified_values += 1

    def _resolve(self, cid: CID) -> Any:
        block = self._store.get(cid)
        if block is None:
            self.stats.missing_blocks += 1
            logger.debug(f"Referenced block {cid} is missing")
            return None
        if block.value is DECODE_ERROR:
            self.stats.undecodable_blocks += 1
            return None
        return block.value

    def _emit(self, cid: CID, key: bytes, value: Any) -> None:
        try:
            text_key = key.decode('utf-8')
        except UnicodeDecodeError:
            self.stats.malformed_keys += 1
            return

        parts = split_key(text_key)
        if parts is None:
            self.stats.malformed_keys += 1
            logger.debug(f"Skipping record {cid} with malformed key {text_key!r}")
            return

        if cid in self._records:
            self.stats.duplicate_records += 1
            return

        collection, record_key = parts
        self._records[cid] = Record(cid, collection, record_key,
                                    make_uri(self._owner_id, collection, record_key), value)
        self.stats.records_found += 1
