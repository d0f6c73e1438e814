from .classify import ValueKind, classify
from .commit import RepositoryCommit, locate_commit
from .mst import MSTWalker, TraversalStats
from .processor import CarProcessingResult, process_car
from .records import Record, group_by_collection, make_uri
