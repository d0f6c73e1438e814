"""Packaging of exported files into ZIP bundles."""

import datetime
import io
import json
import re
import zipfile
from dataclasses import dataclass, asdict, field
from typing import Any, Iterable

from .. import __version__
from ..repo.records import Record, group_by_collection, record_filename, to_json_compatible

MANIFEST_NAME = 'manifest.json'
COMPRESSION_LEVEL = 6
MAX_FILENAME_LENGTH = 255

_INVALID_FILENAME_CHARACTERS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r'\s+')


@dataclass
class ExportManifest:
    """Metadata written into every bundle as manifest.json."""
    tool: str = "atexport"
    """Name of the exporting tool"""

    version: str = __version__
    """Version of the exporting tool"""

    owner_id: str | None = None
    """DID of the exported repository"""

    kind: str = ""
    """What the bundle holds: 'records' or 'blobs'"""

    part: int = 1
    """1-based index of this bundle within the export"""

    total_parts: int = 1
    """Number of bundles in the export"""

    total_items: int = 0
    """Items assigned to this bundle"""

    succeeded: int = 0
    """Items written into this bundle"""

    failed: int = 0
    """Items that could not be fetched or encoded"""

    timestamp: str = ""
    """ISO format timestamp when the bundle was assembled"""

    extra: dict[str, Any] = field(default_factory=dict)
    """Kind-specific details, e.g. decode and traversal counters for records"""

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to dictionary for JSON serialization."""
        return asdict(self)


def sanitize_filename(filename: str) -> str:
    """Replace characters that are invalid in archive member names and limit the length."""
    filename = _INVALID_FILENAME_CHARACTERS.sub('_', filename)
    filename = _WHITESPACE.sub('_', filename)
    return filename[:MAX_FILENAME_LENGTH]


def part_label(part: int, total_parts: int) -> str:
    return f"part_{part:02d}_of_{total_parts:02d}"


def bundle_filename(identifier: str, kind: str, date: datetime.date | None = None,
                    part: int | None = None, total_parts: int | None = None) -> str:
    """File name of a bundle, e.g. ``atexport-alice.test-2026-10-19-blobs_part_02_of_05.zip``."""
    date = date or datetime.date.today()
    name = f"atexport-{sanitize_filename(identifier)}-{date.isoformat()}-{kind}"
    if part is not None and total_parts is not None:
        name += f"_{part_label(part, total_parts)}"
    return f"{name}.zip"


def repository_filename(did: str | None, handle: str | None = None, extension: str = 'zip',
                        now: datetime.datetime | None = None) -> str:
    """File name for a whole-repository download, preferring the handle over the DID."""
    now = now or datetime.datetime.now()
    stamp = f"{now.date().isoformat()}-{int(now.timestamp())}"

    if handle and handle not in ('null', 'undefined'):
        identifier = handle.replace('.', '-')
    elif did and did.startswith('did:plc:'):
        identifier = did.removeprefix('did:plc:')[:12]
    elif did and did.startswith('did:web:'):
        identifier = did.removeprefix('did:web:').replace('.', '-')
    elif did:
        identifier = did.split(':')[-1][:12]
    else:
        identifier = 'records'

    return f"atexport-{sanitize_filename(identifier)}-{stamp}.{extension}"


def record_bundle_files(records: Iterable[Record], *, organize_by_collection: bool = True,
                        prettify: bool = True, folder: str | None = None) -> list[tuple[str, bytes]]:
    """Render records as JSON files, one per record.

    With organize_by_collection, files are placed into one directory per collection
    (``app.bsky.feed.post/3k2a.json``); otherwise they are written flat.
    """
    indent = 2 if prettify else None

    def render(record: Record) -> bytes:
        return json.dumps(to_json_compatible(record.value), indent=indent, ensure_ascii=False).encode('utf-8')

    base = f"{folder}/" if folder else ""
    files = []
    if organize_by_collection:
        for collection, collection_records in group_by_collection(records).items():
            directory = sanitize_filename(collection)
            for index, record in enumerate(collection_records):
                files.append((f"{base}{directory}/{record_filename(record, index)}", render(record)))
    else:
        for index, record in enumerate(records):
            files.append((f"{base}{record_filename(record, index)}", render(record)))
    return files


def _unique_name(name: str, used: set[str]) -> str:
    if name not in used:
        return name
    stem, dot, extension = name.rpartition('.')
    if not dot:
        stem, extension = name, ''
    counter = 2
    while True:
        candidate = f"{stem}_{counter}.{extension}" if dot else f"{stem}_{counter}"
        if candidate not in used:
            return candidate
        counter += 1


def assemble_bundle(files: Iterable[tuple[str, bytes]], manifest: ExportManifest | None = None) -> bytes:
    """Build a DEFLATE-compressed ZIP from (name, bytes) pairs plus an optional manifest.

    Members with identical names are disambiguated with a numeric suffix rather
    than overwritten.
    """
    if manifest is not None and not manifest.timestamp:
        manifest.timestamp = datetime.datetime.now(datetime.UTC).isoformat()

    buffer = io.BytesIO()
    used: set[str] = {MANIFEST_NAME} if manifest is not None else set()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL) as archive:
        for name, data in files:
            name = _unique_name(name, used)
            used.add(name)
            archive.writestr(name, data)

        if manifest is not None:
            archive.writestr(MANIFEST_NAME, json.dumps(manifest.to_dict(), indent=2))

    return buffer.getvalue()
