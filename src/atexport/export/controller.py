"""Chunked export of records and blobs into one or more bundles.

Small exports produce a single bundle. Exports with more items than the part size
are split into parts that are processed strictly one after another: each part is
fetched, assembled, saved and released before the next one starts, so at most one
part's payload is held in memory and at most one save prompt is open.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx

from .assembler import ExportManifest, assemble_bundle, bundle_filename, part_label, record_bundle_files
from .sink import BundleSink
from ..download.content_types import blob_filename
from ..download.manager import DownloadManager
from ..errors import AtExportError, BundleSaveError, ExportCancelled
from ..events import CancellationSignal, LogEntry, LogLevel, NullReporter, Progress, Reporter, ScopedReporter
from ..repo.processor import CarProcessingResult
from ..settings import DownloadOptions, ExportOptions

logger = logging.getLogger(__name__)

T = TypeVar('T')


class JobStatus(StrEnum):
    RUNNING = 'running'
    COMPLETE = 'complete'
    CANCELLED = 'cancelled'


@dataclass
class PartResult:
    """Outcome of one part.

    Attributes:
        index: 1-based part number
        total_in_part: Items assigned to the part
        succeeded: Items written into the bundle
        failed: Items that could not be fetched
        saved_as: Where the bundle was written, None if it was not saved
        skipped: True when the user declined to choose a save location
    """
    index: int
    total_in_part: int
    succeeded: int = 0
    failed: int = 0
    saved_as: str | None = None
    skipped: bool = False


@dataclass
class ExportJob:
    kind: str
    owner_id: str | None = None
    parts: list[PartResult] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)
    status: JobStatus = JobStatus.RUNNING

    @property
    def cancelled(self) -> bool:
        return self.status == JobStatus.CANCELLED

    @property
    def succeeded(self) -> int:
        return sum(part.succeeded for part in self.parts)

    @property
    def failed(self) -> int:
        return sum(part.failed for part in self.parts)

    @property
    def saved(self) -> list[str]:
        return [part.saved_as for part in self.parts if part.saved_as is not None]


def plan_parts(items: Sequence[T], threshold: int) -> list[list[T]]:
    """Split items into consecutive parts of at most threshold items.

    Up to threshold items form a single part; anything larger is split into
    ceil(n / threshold) parts. An empty input still yields one empty part.
    """
    if threshold < 1:
        raise ValueError(f"Threshold must be at least 1: {threshold}")
    if len(items) <= threshold:
        return [list(items)]
    count = math.ceil(len(items) / threshold)
    return [list(items[i * threshold:(i + 1) * threshold]) for i in range(count)]


class _JobReporter:
    """Forwards to the caller's reporter and keeps every log entry on the job."""

    def __init__(self, job: ExportJob, parent: Reporter):
        self._job = job
        self._parent = parent

    def log(self, level: LogLevel, message: str) -> LogEntry:
        entry = self._parent.log(level, message)
        self._job.logs.append(entry)
        return entry

    def progress(self, current: int, total: int, stage: str) -> Progress:
        return self._parent.progress(current, total, stage)


PartBuilder = Callable[[list, int, int, Reporter], Awaitable[tuple[list[tuple[str, bytes]], ExportManifest]]]


class ExportController:
    """Drives an export job to a terminal state.

    A job always ends ``complete`` (possibly with failed items, which are counted
    and logged) or ``cancelled``. Only fatal errors, such as a missing save target or
    a bundle that cannot be written, are raised after being logged on the job.
    """

    def __init__(self, sink: BundleSink, options: ExportOptions | None = None,
                 download_options: DownloadOptions | None = None,
                 client: httpx.AsyncClient | None = None,
                 reporter: Reporter | None = None,
                 cancel: CancellationSignal | None = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sink = sink
        self._options = options or ExportOptions()
        self._download_options = download_options or DownloadOptions()
        self._client = client
        self._reporter = reporter or NullReporter()
        self._cancel = cancel or CancellationSignal()
        self._sleep = sleep

    @property
    def cancel_signal(self) -> CancellationSignal:
        return self._cancel

    async def export_blobs(self, owner_id: str, cids: Sequence[str], url_for: Callable[[str], str],
                           label: str | None = None) -> ExportJob:
        """Fetch every blob and save them as one or more bundles.

        Args:
            owner_id: DID the blobs belong to
            cids: Blob CIDs to export
            url_for: Maps a CID to its download URL
            label: Identifier used in bundle names, defaults to owner_id
        """
        if self._client is None:
            raise ValueError("Exporting blobs requires an HTTP client")

        job = ExportJob('blobs', owner_id)
        reporter = _JobReporter(job, self._reporter)
        if not cids:
            reporter.log(LogLevel.WARN, "No blobs found in repository")
            job.status = JobStatus.COMPLETE
            return job

        parts = plan_parts(list(cids), self._options.part_size)
        total = len(cids)

        async def build(items: list[str], index: int, offset: int, part_reporter: Reporter):
            multi = len(parts) > 1
            folder = f"blobs_part_{index:02d}" if multi else 'blobs'
            manager = DownloadManager(
                self._client, self._download_options,
                ScopedReporter(part_reporter, offset=offset, total=total),
                sleep=self._sleep)
            results = await manager.run(items, url_for, self._cancel)

            files = [(f"{folder}/{blob_filename(result.id, result.content_type)}", result.data)
                     for result in results if result.ok]
            failed = [result.id for result in results if not result.ok]
            if failed:
                part_reporter.log(LogLevel.WARN, f"{len(failed)} blobs failed to download and were skipped")

            manifest = ExportManifest(
                owner_id=owner_id, kind='blobs', part=index, total_parts=len(parts),
                total_items=len(items), succeeded=len(files), failed=len(failed),
                extra={'total_blobs': total, 'failed_cids': failed})
            return files, manifest

        return await self._run(job, reporter, parts, build, label or owner_id, 'blobs')

    async def export_records(self, result: CarProcessingResult, label: str | None = None) -> ExportJob:
        """Save the records reconstructed from an archive as one or more bundles."""
        job = ExportJob('records', result.did)
        reporter = _JobReporter(job, self._reporter)
        parts = plan_parts(result.records, self._options.part_size)
        total = len(result.records)

        reporter.log(LogLevel.INFO, f"Processed {result.total_blocks} blocks "
                                    f"({result.decode_errors} decode errors), found {total} records")
        if result.did is None:
            reporter.log(LogLevel.WARN, "No repository commit found; owner is unknown")
        if not result.records:
            reporter.log(LogLevel.WARN, "No records found in repository")
            job.status = JobStatus.COMPLETE
            return job

        async def build(items: list, index: int, offset: int, part_reporter: Reporter):
            self._cancel.raise_if_cancelled()
            folder = f"records_{part_label(index, len(parts))}" if len(parts) > 1 else None
            files = record_bundle_files(items, organize_by_collection=self._options.organize_by_collection,
                                        prettify=self._options.prettify_json, folder=folder)
            part_reporter.progress(offset + len(items), total, 'Packaging records')

            manifest = ExportManifest(
                owner_id=result.did, kind='records', part=index, total_parts=len(parts),
                total_items=len(items), succeeded=len(files), failed=len(items) - len(files),
                extra=result.metadata())
            return files, manifest

        return await self._run(job, reporter, parts, build, label or result.did or 'repository', 'records')

    async def _run(self, job: ExportJob, reporter: Reporter, parts: list[list], build: PartBuilder,
                   label: str, kind: str) -> ExportJob:
        total_parts = len(parts)
        total_items = sum(len(part) for part in parts)
        if total_parts > 1:
            reporter.log(LogLevel.INFO, f"Large export detected: {total_items} {kind} will be split "
                                        f"into {total_parts} parts of up to {self._options.part_size}")

        offset = 0
        try:
            for index, items in enumerate(parts, start=1):
                self._cancel.raise_if_cancelled()
                part_reporter = ScopedReporter(reporter, prefix=f"[Part {index}]") if total_parts > 1 else reporter
                await self._export_part(job, part_reporter, build, items, index, total_parts, offset, label, kind)
                offset += len(items)
        except ExportCancelled:
            job.status = JobStatus.CANCELLED
            reporter.log(LogLevel.WARN, "Download cancelled by user")
            if job.saved:
                reporter.log(LogLevel.INFO, f"{len(job.saved)} completed parts were kept")
            return job
        except AtExportError as e:
            reporter.log(LogLevel.ERROR, f"Export failed: {e}")
            raise

        job.status = JobStatus.COMPLETE
        if job.failed:
            reporter.log(LogLevel.WARN, f"Export complete with {job.failed} failed {kind}")
        reporter.log(LogLevel.SUCCESS, f"Export complete: {job.succeeded} {kind} in {len(job.saved)} bundles")
        return job

    async def _export_part(self, job: ExportJob, reporter: Reporter, build: PartBuilder, items: list,
                           index: int, total_parts: int, offset: int, label: str, kind: str):
        multi = total_parts > 1
        name = bundle_filename(label, kind, part=index if multi else None,
                               total_parts=total_parts if multi else None)

        location = self._sink.choose(name)
        if location is None:
            job.parts.append(PartResult(index, len(items), skipped=True))
            reporter.log(LogLevel.WARN, f"No save location chosen, skipping part {index} of {total_parts}")
            return

        if multi:
            reporter.log(LogLevel.INFO, f"Processing {len(items)} {kind}")
        files, manifest = await build(items, index, offset, reporter)

        # Nothing is saved for a part interrupted by cancellation
        self._cancel.raise_if_cancelled()
        bundle = assemble_bundle(files, manifest)
        try:
            saved_as = self._sink.save(location, bundle)
        except OSError as e:
            raise BundleSaveError(f"Could not save {name}: {e}") from e

        job.parts.append(PartResult(index, len(items), manifest.succeeded, manifest.failed, saved_as))
        if multi:
            reporter.log(LogLevel.SUCCESS,
                         f"Part {index} of {total_parts} saved successfully! ({manifest.succeeded} {kind})")
        else:
            reporter.log(LogLevel.SUCCESS, f"Saved {manifest.succeeded} {kind} to {saved_as}")
