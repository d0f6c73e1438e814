import base64
from dataclasses import dataclass
from typing import Any, Iterable

from cbrrr import CID

COLLECTION_SEPARATOR = '/'
UNKNOWN_COLLECTION = 'unknown'


@dataclass(frozen=True)
class Record:
    """A repository record recovered from the MST.

    Identity is the CID: the same CID always carries the same content.
    """
    cid: CID
    collection: str
    record_key: str
    uri: str
    value: Any


def make_uri(owner_id: str, collection: str, record_key: str) -> str:
    return f"at://{owner_id}/{collection}/{record_key}"


def split_key(key: str) -> tuple[str, str] | None:
    """Split an MST key into (collection, record_key); None unless it has exactly one separator."""
    parts = key.split(COLLECTION_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def group_by_collection(records: Iterable[Record]) -> dict[str, list[Record]]:
    """Bucket records by collection, preserving their order within each bucket."""
    grouped: dict[str, list[Record]] = {}
    for record in records:
        grouped.setdefault(record.collection or UNKNOWN_COLLECTION, []).append(record)
    return grouped


def record_filename(record: Record, index: int) -> str:
    if record.record_key and record.record_key != 'unknown':
        return f"{record.record_key}.json"
    return f"record_{index + 1}.json"


def to_json_compatible(value: Any) -> Any:
    """Convert a decoded DAG-CBOR value into plain JSON types.

    CID links become ``{"$link": "<cid>"}`` and byte strings become
    ``{"$bytes": "<base64>"}``, following the atproto JSON conventions.
    """
    if isinstance(value, CID):
        return {'$link': value.encode()}
    if isinstance(value, bytes):
        return {'$bytes': base64.b64encode(value).decode('ascii').rstrip('=')}
    if isinstance(value, dict):
        return {str(k): to_json_compatible(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_json_compatible(v) for v in value]
    return value


def record_to_json(record: Record) -> dict[str, Any]:
    """Full JSON description of a record, as printed by ``inspect``."""
    return {
        'uri': record.uri,
        'cid': record.cid.encode(),
        'collection': record.collection,
        'rkey': record.record_key,
        'value': to_json_compatible(record.value),
    }
