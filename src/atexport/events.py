"""Structured progress and log events of an export.

Long-running exports report through a stream of LogEntry and Progress events that
the caller drains, rather than through UI callbacks. The stream is the only
observable surface of a running job and is sufficient to reconstruct its state.

Typical usage example:

    channel = EventChannel()
    job = await controller.export_blobs(did, cids, client.blob_url)
    for event in channel.drain():
        print(event)
"""
import asyncio
import datetime
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Protocol

from .errors import ExportCancelled

logger = logging.getLogger(__name__)


class LogLevel(StrEnum):
    INFO = 'info'
    WARN = 'warn'
    ERROR = 'error'
    SUCCESS = 'success'


_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str
    timestamp: str

    def __str__(self):
        return f"{self.timestamp} [{self.level}] {self.message}"


@dataclass(frozen=True)
class Progress:
    current: int
    total: int
    stage: str

    def __str__(self):
        return f"{self.stage}: {self.current}/{self.total}"


Event = LogEntry | Progress


class Reporter(Protocol):
    """Anything export components can report to."""

    def log(self, level: LogLevel, message: str) -> LogEntry: ...

    def progress(self, current: int, total: int, stage: str) -> Progress: ...


class EventChannel:
    """Unbounded FIFO of export events.

    Producers never block. Consumers either drain() whatever has accumulated or
    iterate asynchronously until close() is called. Listeners, if any, see every
    event synchronously as it is emitted.
    """

    _CLOSED = object()

    def __init__(self, listeners: list[Callable[[Event], None]] | None = None, buffer: bool = True):
        """Create a channel.

        Args:
            listeners: Called synchronously with every event
            buffer: When False, events only reach the listeners and nothing is queued for draining
        """
        self._queue: asyncio.Queue = asyncio.Queue()
        self._listeners = list(listeners or [])
        self._buffer = buffer
        self._closed = False

    def emit(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("Event channel is closed")
        if self._buffer:
            self._queue.put_nowait(event)
        for listener in self._listeners:
            listener(event)

    def log(self, level: LogLevel, message: str) -> LogEntry:
        level = LogLevel(level)
        entry = LogEntry(level, message, datetime.datetime.now(datetime.UTC).isoformat())
        logger.log(_LOGGING_LEVELS[level], message)
        self.emit(entry)
        return entry

    def progress(self, current: int, total: int, stage: str) -> Progress:
        snapshot = Progress(current, total, stage)
        self.emit(snapshot)
        return snapshot

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(EventChannel._CLOSED)

    def drain(self) -> list[Event]:
        """Return every event emitted so far without waiting."""
        events = []
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if event is EventChannel._CLOSED:
                # Keep the marker so that async iteration still terminates
                self._queue.put_nowait(event)
                return events
            events.append(event)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        event = await self._queue.get()
        if event is EventChannel._CLOSED:
            self._queue.put_nowait(event)
            raise StopAsyncIteration
        return event


class ScopedReporter:
    """A view over another reporter for one stage of a job.

    Messages get a prefix (e.g. ``[Part 2]``) and progress is shifted by offset and
    reported against the job-wide total, so that per-part progress reads as progress
    of the whole job.
    """

    def __init__(self, parent: Reporter, prefix: str | None = None, offset: int = 0,
                 total: int | None = None):
        self._parent = parent
        self._prefix = prefix
        self._offset = offset
        self._total = total

    def log(self, level: LogLevel, message: str) -> LogEntry:
        if self._prefix:
            message = f"{self._prefix} {message}"
        return self._parent.log(level, message)

    def progress(self, current: int, total: int, stage: str) -> Progress:
        return self._parent.progress(
            self._offset + current, total if self._total is None else self._total, stage)


class NullReporter:
    def log(self, level: LogLevel, message: str) -> LogEntry:
        level = LogLevel(level)
        logger.log(_LOGGING_LEVELS[level], message)
        return LogEntry(level, message, datetime.datetime.now(datetime.UTC).isoformat())

    def progress(self, current: int, total: int, stage: str) -> Progress:
        return Progress(current, total, stage)


class CancellationSignal:
    """Cooperative cancellation flag shared by the parts of one export job.

    Safe to set from another thread (e.g. a signal handler) while the job runs in an
    event loop. Work checks it at well-defined checkpoints; it never interrupts a
    network call in progress.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExportCancelled()
