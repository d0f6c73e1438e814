"""Bounded-concurrency downloader with retry and backoff.

Every task moves through::

    queued -> running -> succeeded
                      -> queued (attempt + 1, after a backoff delay) -> running -> ...
                      -> failed (retries exhausted or a non-retryable status)

At most ``concurrency`` attempts are in flight for one run() call. Runs of more than
1000 items start at two, and every 100 items the advertised rate limit may lower the
bound further and add a pause after each success. Cancellation is
cooperative: it is checked before each task is started, before each retry is
scheduled and before each attempt, never in the middle of a request.
"""
import asyncio
import logging
from asyncio import TaskGroup
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Awaitable, Callable, Iterable

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from .rate_limit import LARGE_DOWNLOAD, RateLimitTracker
from ..errors import ExportCancelled, FetchError, RateLimitedError
from ..events import CancellationSignal, LogLevel, NullReporter, Reporter
from ..settings import DownloadOptions
from ..utils.throttler import Throttler

logger = logging.getLogger(__name__)

THROTTLE_CHECK_INTERVAL = 100


class TaskStatus(StrEnum):
    QUEUED = 'queued'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass
class DownloadTask:
    """State of one item while a run is in progress.

    Attributes:
        id: Caller-supplied identifier (e.g. a blob CID)
        url: URL computed for the id when the run started
        priority: Higher priorities are started first; ties keep input order
        attempt: Number of attempts started so far
        status: Current state
        delays: Backoff delays slept before each retry, in order
        error: Message of the last failed attempt
    """
    id: str
    url: str
    priority: int = 0
    attempt: int = 0
    status: TaskStatus = TaskStatus.QUEUED
    delays: list[float] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class DownloadResult:
    id: str
    data: bytes | None
    content_type: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class DownloadStats:
    total: int
    queued: int
    running: int
    succeeded: int
    failed: int
    peak_in_flight: int
    active_concurrency: int


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.retryable


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class DownloadManager:
    """Fetches many URLs with bounded concurrency, retries and structured reporting.

    Individual failures never raise: they surface as results with ``data=None``.
    run() raises only for cancellation (ExportCancelled) and for programmer errors
    such as url_for raising.

    The task list and counters are owned by the run() coroutine and the tasks it
    spawns on the same event loop; other components observe them through stats()
    and the reporter only.
    """

    def __init__(self, client: httpx.AsyncClient, options: DownloadOptions | None = None,
                 reporter: Reporter | None = None, *,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 stage: str = 'Downloading blobs'):
        """Initialize the manager.

        Args:
            client: HTTP client used for every attempt
            options: Concurrency, retry and timeout settings
            reporter: Receives progress snapshots and log entries
            sleep: Coroutine used for backoff delays
            stage: Stage name reported with progress snapshots
        """
        self._client = client
        self._options = options or DownloadOptions()
        self._reporter = reporter or NullReporter()
        self._sleep = sleep
        self._stage = stage
        self._backoff = wait_exponential(multiplier=self._options.base_delay, exp_base=2,
                                         max=self._options.max_delay)
        self._rate_limits = RateLimitTracker()
        self._rate_limit_reported = False
        self._tasks: list[DownloadTask] = []
        self._finished = 0
        self._throttler: Throttler | None = None

    @property
    def options(self) -> DownloadOptions:
        return self._options

    @property
    def tasks(self) -> list[DownloadTask]:
        return list(self._tasks)

    def stats(self) -> DownloadStats:
        counts = {status: 0 for status in TaskStatus}
        for task in self._tasks:
            counts[task.status] += 1
        return DownloadStats(
            total=len(self._tasks),
            queued=counts[TaskStatus.QUEUED],
            running=counts[TaskStatus.RUNNING],
            succeeded=counts[TaskStatus.SUCCEEDED],
            failed=counts[TaskStatus.FAILED],
            peak_in_flight=self._throttler.peak_in_flight if self._throttler else 0,
            active_concurrency=self._throttler.limit if self._throttler else self._options.concurrency,
        )

    async def run(self, ids: Iterable[str], url_for: Callable[[str], str],
                  cancel: CancellationSignal | None = None,
                  priority_for: Callable[[str], int] | None = None) -> list[DownloadResult]:
        """Download every id and return one result per id, in input order.

        Args:
            ids: Identifiers to fetch
            url_for: Maps an identifier to its URL
            cancel: Cooperative cancellation signal
            priority_for: Optional priority of each identifier

        Returns:
            DownloadResult per id; failed items have data None

        Raises:
            ExportCancelled: If cancel was signalled; in-flight attempts are awaited first
        """
        cancel = cancel or CancellationSignal()
        self._tasks = [DownloadTask(item_id, url_for(item_id), priority_for(item_id) if priority_for else 0)
                       for item_id in ids]
        self._finished = 0
        total = len(self._tasks)
        results: dict[int, DownloadResult] = {}

        self._reporter.log(LogLevel.INFO, f"Starting download of {total} items")
        self._report_progress()

        order = sorted(range(total), key=lambda i: -self._tasks[i].priority)
        async with TaskGroup() as tg:
            self._throttler = Throttler(tg, self._options.concurrency)
            if total > LARGE_DOWNLOAD:
                self._throttler.set_limit(2)
                self._reporter.log(LogLevel.INFO,
                                   f"Large download detected ({total} items) - starting with reduced concurrency")
            for position, index in enumerate(order):
                if cancel.cancelled:
                    break
                if position > 0 and position % THROTTLE_CHECK_INTERVAL == 0:
                    self._adjust_throttling(total, position)
                await self._throttler.schedule(self._download(index, cancel, results))

        if cancel.cancelled:
            self._reporter.log(LogLevel.WARN, f"Download cancelled after {self._finished} of {total} items")
            raise ExportCancelled()

        succeeded = sum(1 for result in results.values() if result.ok)
        self._reporter.log(LogLevel.INFO, f"Download complete: {succeeded} successful, {total - succeeded} failed")
        if self._rate_limits.last is not None:
            self._reporter.log(LogLevel.INFO, self._rate_limits.status_message())

        return [results[index] for index in range(total)]

    def _adjust_throttling(self, total: int, position: int):
        recommendation = self._rate_limits.recommend(total, position)
        if not recommendation.should_throttle:
            return
        limit = min(recommendation.concurrency, self._options.concurrency)
        if limit == self._throttler.limit:
            return
        self._throttler.set_limit(limit)
        logger.debug(f"Concurrency set to {limit} after {position} of {total} items")
        self._reporter.log(LogLevel.INFO, f"Throttling adjusted: {recommendation.reason}")

    async def _pace(self):
        if self._finished == 0:
            return
        delay = self._rate_limits.recommend(len(self._tasks), self._finished).delay
        if delay > 0:
            await self._sleep(delay)

    async def _download(self, index: int, cancel: CancellationSignal, results: dict[int, DownloadResult]):
        task = self._tasks[index]
        try:
            results[index] = await self._download_with_retries(task, cancel)
        except ExportCancelled:
            logger.debug(f"Download of {task.id} abandoned after cancellation")

    async def _download_with_retries(self, task: DownloadTask, cancel: CancellationSignal) -> DownloadResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._options.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._before_retry(task, cancel, retry_state),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    cancel.raise_if_cancelled()
                    task.attempt += 1
                    self._transition(task, TaskStatus.RUNNING)
                    data, content_type = await self._fetch_once(task)
        except FetchError as e:
            task.error = str(e)
            self._transition(task, TaskStatus.FAILED)
            if e.status == 404:
                self._reporter.log(LogLevel.WARN, f"{task.id} not found (404)")
            else:
                self._reporter.log(LogLevel.ERROR,
                                   f"Failed to download {task.id} after {task.attempt} attempts: {e}")
            return DownloadResult(task.id, None, None, str(e))

        await self._pace()
        self._transition(task, TaskStatus.SUCCEEDED)
        return DownloadResult(task.id, data, content_type)

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            delay = max(delay, min(error.retry_after, self._options.max_delay))
        return delay

    def _before_retry(self, task: DownloadTask, cancel: CancellationSignal, retry_state: RetryCallState):
        cancel.raise_if_cancelled()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        task.delays.append(delay)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        task.error = str(error)
        self._transition(task, TaskStatus.QUEUED)
        self._reporter.log(LogLevel.WARN,
                           f"Retry {task.attempt}/{self._options.max_retries} for {task.id} "
                           f"in {delay:.1f}s: {error}")

    async def _fetch_once(self, task: DownloadTask) -> tuple[bytes, str | None]:
        try:
            async with asyncio.timeout(self._options.timeout):
                response = await self._client.get(task.url, headers={'User-Agent': self._options.user_agent})
        except TimeoutError as e:
            raise FetchError(f"Timed out after {self._options.timeout}s") from e
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

        info = self._rate_limits.observe(response.headers)
        if info is not None and not self._rate_limit_reported:
            self._rate_limit_reported = True
            self._reporter.log(LogLevel.INFO, f"Detected rate limit: {info.limit} requests per window, "
                                              f"{info.remaining} remaining")

        status = response.status_code
        if status == 404:
            raise FetchError("Not found (404)", status=404, retryable=False)
        if status == 429:
            raise RateLimitedError("Rate limited (429)", _parse_retry_after(response.headers.get('retry-after')))
        if not response.is_success:
            raise FetchError(f"HTTP {status}: {response.reason_phrase}", status=status)

        return response.content, response.headers.get('content-type')

    def _transition(self, task: DownloadTask, status: TaskStatus):
        task.status = status
        if status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED):
            self._finished += 1
        self._report_progress()

    def _report_progress(self):
        self._reporter.progress(self._finished, len(self._tasks), self._stage)
