"""Shape-based classification of decoded repository values.

DAG-CBOR carries no nominal type for tree structures, so the kind of a value is
decided from the fields it declares:

- MST node: an entries list ``e`` or a CID-typed ``l``/``r`` pointer, whether or not
  a ``$type`` is present
- commit: a ``did`` string, a CID-typed ``data`` pointer, and a ``rev`` (or ``version``)
- record: a ``$type`` discriminator
"""
from enum import StrEnum
from typing import Any

from cbrrr import CID

TYPE_FIELD = '$type'


class ValueKind(StrEnum):
    COMMIT = 'commit'
    MST_NODE = 'mst-node'
    RECORD = 'record'
    OTHER = 'other'


def is_mst_node(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    return isinstance(value.get('e'), list) or isinstance(value.get('l'), CID) \
        or isinstance(value.get('r'), CID)


def is_commit(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    did = value.get('did')
    return isinstance(did, str) and bool(did) and isinstance(value.get('data'), CID) \
        and ('rev' in value or 'version' in value)


def is_record(value: Any) -> bool:
    return isinstance(value, dict) and TYPE_FIELD in value


def classify(value: Any) -> ValueKind:
    if is_mst_node(value):
        return ValueKind.MST_NODE
    if is_commit(value):
        return ValueKind.COMMIT
    if is_record(value):
        return ValueKind.RECORD
    return ValueKind.OTHER
