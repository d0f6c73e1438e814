import logging
from dataclasses import dataclass
from typing import Any

from cbrrr import CID

from .classify import is_commit
from ..car.blockstore import Block

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepositoryCommit:
    """Root object of a repository revision.

    Attributes:
        owner_id: DID of the repository owner
        data_cid: CID of the MST root node
        revision: Value of ``rev`` (or ``version`` for older commits); any type
        cid: CID of the commit block itself
        value: The decoded commit object
    """
    owner_id: str
    data_cid: CID
    revision: Any
    cid: CID
    value: dict


def locate_commit(store: dict[CID, Block]) -> RepositoryCommit | None:
    """Return the first block, in archive order, that looks like a repository commit.

    An archive without a commit (e.g. a blob-only export) is not an error: the
    caller gets None and proceeds with zero records.
    """
    for cid, block in store.items():
        value = block.value
        if is_commit(value):
            revision = value['rev'] if 'rev' in value else value['version']
            logger.info(f"Found repository commit {cid} for {value['did']} (revision {revision})")
            return RepositoryCommit(value['did'], value['data'], revision, cid, value)

    logger.info("No repository commit found in archive")
    return None
