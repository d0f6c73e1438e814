import logging
from pathlib import Path
from typing import NamedTuple

from ..download.client import RepoClient
from ..errors import CarFormatError
from ..events import LogLevel, Reporter
from ..export.controller import ExportController, ExportJob
from ..repo.processor import process_car

logger = logging.getLogger(__name__)


class ExportRecordsArgs(NamedTuple):
    """Arguments for the records export."""
    car_path: Path | None  # Local CAR file; the repository is downloaded when None
    did: str | None  # Repository to download when no CAR file is given
    handle: str | None  # Used in bundle names instead of the DID
    verify: bool = False  # Check block digests against their CIDs


async def do_export_records(controller: ExportController, client: RepoClient | None,
                            reporter: Reporter, args: ExportRecordsArgs) -> ExportJob:
    """Decode a repository archive and save its records as JSON bundles."""
    if args.car_path is not None:
        reporter.log(LogLevel.INFO, f"Reading archive {args.car_path}")
        data = args.car_path.read_bytes()
    elif args.did is not None and client is not None:
        reporter.log(LogLevel.INFO, f"Downloading repository of {args.did}")
        data = await client.get_repo(args.did)
        reporter.log(LogLevel.INFO, f"Downloaded {len(data)} bytes")
    else:
        raise ValueError("Either a CAR file or a DID with a client is required")

    try:
        result = process_car(data, verify=args.verify)
    except CarFormatError as e:
        reporter.log(LogLevel.ERROR, f"Unreadable archive: {e}")
        raise

    return await controller.export_records(result, args.handle or args.did)
