from typing import NamedTuple

from ..download.client import RepoClient
from ..events import CancellationSignal
from ..export.controller import ExportController, ExportJob


class ExportBlobsArgs(NamedTuple):
    """Arguments for the blob export."""
    did: str
    cids: list[str] | None  # Blobs to export; every blob of the repository when None
    label: str | None  # Used in bundle names instead of the DID


async def do_export_blobs(controller: ExportController, client: RepoClient, args: ExportBlobsArgs,
                          cancel: CancellationSignal) -> ExportJob:
    """Archive the given blobs, or every blob listed for the repository."""
    cids = args.cids if args.cids else await client.list_blobs(args.did, cancel)
    return await controller.export_blobs(
        args.did, cids, lambda cid: client.blob_url(args.did, cid), args.label)
