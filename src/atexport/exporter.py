import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Iterator

import httpx

from .commands.export_blobs import ExportBlobsArgs, do_export_blobs
from .commands.export_records import ExportRecordsArgs, do_export_records
from .commands.save_car import SaveCarArgs, do_save_car
from .download.client import RepoClient
from .events import CancellationSignal, NullReporter, Reporter
from .export.controller import ExportController, ExportJob
from .export.sink import BundleSink, resolve_sink
from .repo.processor import process_car
from .repo.records import record_to_json
from .settings import (DEFAULT_PDS, SETTING_LOG_LEVEL, SETTING_LOG_PATH, SETTING_OUTPUT_DIR, SETTING_PDS,
                       DownloadOptions, ExportOptions, ExportSettings)

logger = logging.getLogger(__name__)


class Exporter:
    """High-level workflow layer for exporting a repository.

    Exporter turns user-facing operations into complete jobs:
    - export_records(): decode a repository archive and save its records as JSON
    - export_blobs(): fetch and archive the blobs of a repository
    - save_car(): save the raw repository archive
    - inspect(): list the records of a local archive

    Each operation runs to completion on its own event loop and owns the HTTP
    client for its duration. Progress and log events go to the reporter; an
    EventChannel can be passed to drain them.

    Contrast with ExportController, which implements the chunking and part
    sequencing of a single export without knowing where items come from.
    """

    def __init__(self, settings: ExportSettings | None = None, sink: BundleSink | None = None, *,
                 pds: str | None = None,
                 reporter: Reporter | None = None,
                 cancel: CancellationSignal | None = None,
                 transport: httpx.AsyncBaseTransport | None = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize the exporter.

        Args:
            settings: Loaded settings; an empty settings object when None
            sink: Where bundles are delivered; the export.output_dir directory when None
            pds: PDS base URL overriding service.pds
            reporter: Receives log and progress events
            cancel: Cancellation signal shared with the caller
            transport: HTTP transport, for tests or custom networking
            sleep: Coroutine used for retry backoff

        Raises:
            NoSaveTargetError: If no sink is given and no output directory can be resolved
        """
        self._settings = settings or ExportSettings()
        self._sink = sink or resolve_sink(directory=self._settings.get(SETTING_OUTPUT_DIR, '.'))
        self._pds = pds or self._settings.get(SETTING_PDS, DEFAULT_PDS)
        self._reporter = reporter or NullReporter()
        self._cancel = cancel or CancellationSignal()
        self._transport = transport
        self._sleep = sleep
        self._download_options = DownloadOptions.from_settings(self._settings)
        self._export_options = ExportOptions.from_settings(self._settings)

    @property
    def pds(self) -> str:
        return self._pds

    @property
    def sink(self) -> BundleSink:
        return self._sink

    def cancel(self):
        """Request cooperative cancellation of the running operation."""
        self._cancel.cancel()

    def configure_logging_from_settings(self) -> bool:
        """Configure logging from settings if a log path is specified.

        Preserves the current logging level if already configured (e.g., from CLI arguments),
        otherwise uses logging.level from settings.

        Returns:
            True if logging was configured, False otherwise
        """
        log_path_setting = self._settings.get(SETTING_LOG_PATH)
        if log_path_setting:
            log_path = str(log_path_setting)
            if logging.root.level != logging.NOTSET and logging.root.handlers:
                level = logging.root.level
            else:
                level = getattr(logging, str(self._settings.get(SETTING_LOG_LEVEL, 'INFO')).upper(), logging.INFO)

            # Reset logging configuration
            for handler in logging.root.handlers[:]:
                logging.root.removeHandler(handler)

            logging.basicConfig(
                filename=log_path,
                level=level,
                format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            return True
        return False

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            headers={'User-Agent': self._download_options.user_agent},
            timeout=httpx.Timeout(60.0, connect=self._download_options.timeout),
            follow_redirects=True,
        )

    def _controller(self, client: httpx.AsyncClient | None) -> ExportController:
        return ExportController(self._sink, self._export_options, self._download_options, client,
                                self._reporter, self._cancel, self._sleep)

    def export_records(self, car_path: str | os.PathLike | None = None, did: str | None = None,
                       handle: str | None = None, verify: bool = False) -> ExportJob:
        """Save the records of a local archive, or of the repository of did, as JSON bundles.

        Raises:
            CarFormatError: If the archive framing is unreadable
            RepositoryFetchError: If the repository cannot be downloaded
            NoSaveTargetError: If no save location is available
        """
        if car_path is None and did is None:
            raise ValueError("Either car_path or did is required")

        async def run():
            async with self._http_client() as client:
                return await do_export_records(
                    self._controller(client), RepoClient(self._pds, client, self._reporter), self._reporter,
                    ExportRecordsArgs(Path(car_path) if car_path is not None else None, did, handle, verify))

        return asyncio.run(run())

    def export_blobs(self, did: str, cids: list[str] | None = None, label: str | None = None) -> ExportJob:
        """Archive the given blobs of did, or all of them when cids is empty.

        Raises:
            RepositoryFetchError: If the blob listing cannot be retrieved
            ExportCancelled: If cancelled while the blob listing is fetched
        """
        async def run():
            async with self._http_client() as client:
                return await do_export_blobs(
                    self._controller(client), RepoClient(self._pds, client, self._reporter),
                    ExportBlobsArgs(did, cids, label), self._cancel)

        return asyncio.run(run())

    def save_car(self, did: str, handle: str | None = None) -> str | None:
        """Download the raw repository archive of did and save it unchanged."""
        async def run():
            async with self._http_client() as client:
                return await do_save_car(RepoClient(self._pds, client, self._reporter), self._sink,
                                         self._reporter, SaveCarArgs(did, handle))

        return asyncio.run(run())

    def inspect(self, car_path: str | os.PathLike, as_json: bool = False) -> Iterator[str]:
        """Generate lines describing the records of a local archive.

        Args:
            car_path: Local repository archive
            as_json: Emit one JSON object per record and nothing else

        Yields:
            One line per record (URI and CID) followed by decode and traversal counters
        """
        result = process_car(Path(car_path).read_bytes())
        if as_json:
            for record in result.records:
                yield json.dumps(record_to_json(record), ensure_ascii=False)
            return

        for record in result.records:
            yield f"{record.uri} {record.cid.encode()}"
        yield f"did: {result.did}"
        yield (f"blocks: {result.total_blocks} total, {result.processed_blocks} decoded, "
               f"{result.decode_errors} errors")
        yield f"records: {len(result.records)}"
        for name, value in result.traversal.to_dict().items():
            yield f"{name}: {value}"
