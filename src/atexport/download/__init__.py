from .client import RepoClient
from .content_types import blob_filename, extension_for
from .manager import DownloadManager, DownloadResult, DownloadStats, DownloadTask, TaskStatus
from .rate_limit import RateLimitTracker
