from typing import NamedTuple

from ..download.client import RepoClient
from ..events import LogLevel, Reporter
from ..export.assembler import repository_filename
from ..export.sink import BundleSink


class SaveCarArgs(NamedTuple):
    did: str
    handle: str | None


async def do_save_car(client: RepoClient, sink: BundleSink, reporter: Reporter, args: SaveCarArgs) -> str | None:
    """Download the raw repository archive and save it unchanged.

    Returns:
        Where the archive was saved, or None if no location was chosen
    """
    name = repository_filename(args.did, args.handle, 'car')
    location = sink.choose(name)
    if location is None:
        reporter.log(LogLevel.WARN, "No save location chosen, repository not saved")
        return None

    data = await client.get_repo(args.did)
    saved_as = sink.save(location, data)
    reporter.log(LogLevel.SUCCESS, f"Repository saved to {saved_as} ({len(data)} bytes)")
    return saved_as
