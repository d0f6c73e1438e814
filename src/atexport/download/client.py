"""Thin client for the repository sync endpoints of a PDS.

Only the three calls the export pipeline needs are covered: downloading a
repository archive, listing its blobs, and building blob URLs.
"""
import logging
from urllib.parse import urlencode

import httpx

from ..errors import RepositoryFetchError
from ..events import CancellationSignal, LogLevel, NullReporter, Reporter

logger = logging.getLogger(__name__)

GET_REPO = 'xrpc/com.atproto.sync.getRepo'
LIST_BLOBS = 'xrpc/com.atproto.sync.listBlobs'
GET_BLOB = 'xrpc/com.atproto.sync.getBlob'

CAR_CONTENT_TYPE = 'application/vnd.ipld.car'
LIST_BLOBS_PAGE_SIZE = 100


class RepoClient:
    def __init__(self, pds: str, client: httpx.AsyncClient, reporter: Reporter | None = None):
        self._pds = pds.rstrip('/')
        self._client = client
        self._reporter = reporter or NullReporter()

    @property
    def pds(self) -> str:
        return self._pds

    def _url(self, endpoint: str, **params) -> str:
        return f"{self._pds}/{endpoint}?{urlencode(params)}"

    def blob_url(self, did: str, cid: str) -> str:
        return self._url(GET_BLOB, did=did, cid=cid)

    async def get_repo(self, did: str) -> bytes:
        """Download the full repository of did as CAR bytes.

        Raises:
            RepositoryFetchError: On network errors or a non-success status
        """
        url = self._url(GET_REPO, did=did)
        logger.info(f"Fetching repository archive: {url}")
        try:
            response = await self._client.get(url, headers={'Accept': CAR_CONTENT_TYPE})
        except httpx.HTTPError as e:
            raise RepositoryFetchError(f"Failed to fetch repository: {e}") from e

        if not response.is_success:
            raise RepositoryFetchError(
                f"Failed to fetch repository: {response.status_code} {response.reason_phrase}",
                response.status_code)
        return response.content

    async def list_blobs(self, did: str, cancel: CancellationSignal | None = None) -> list[str]:
        """List every blob CID of did, following cursors until the listing is exhausted.

        Raises:
            RepositoryFetchError: On network errors, a non-success status or a malformed page
            ExportCancelled: If cancel is signalled between pages
        """
        cids: list[str] = []
        cursor: str | None = None
        self._reporter.log(LogLevel.INFO, "Fetching complete blob list from repository...")

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()

            params = {'did': did, 'limit': LIST_BLOBS_PAGE_SIZE}
            if cursor:
                params['cursor'] = cursor
            self._reporter.progress(len(cids), len(cids) + LIST_BLOBS_PAGE_SIZE, 'Fetching blob list')

            try:
                response = await self._client.get(self._url(LIST_BLOBS, **params))
            except httpx.HTTPError as e:
                raise RepositoryFetchError(f"Failed to fetch blob list: {e}") from e
            if not response.is_success:
                raise RepositoryFetchError(f"Failed to fetch blob list: {response.status_code}",
                                           response.status_code)

            try:
                page = response.json()
            except ValueError as e:
                raise RepositoryFetchError(f"Malformed blob list page: {e}") from e
            if not isinstance(page, dict):
                raise RepositoryFetchError("Malformed blob list page: expected an object")

            cids.extend(str(cid) for cid in page.get('cids') or [])
            cursor = page.get('cursor')
            self._reporter.log(LogLevel.INFO, f"Fetched {len(cids)} blob references...")
            if not cursor:
                break

        self._reporter.log(LogLevel.INFO, f"Found {len(cids)} total blobs in repository")
        return cids
