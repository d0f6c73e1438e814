import asyncio
from asyncio import TaskGroup, Semaphore
from typing import Coroutine


class Throttler:
    """Bounds how many download attempts run at once inside one TaskGroup.

    A semaphore permit is taken before a task is created and handed to a slot that
    gives it back exactly once however the task ends.
    The in-flight counters feed the download statistics.

    The semaphore is the hard bound. A lower soft limit can be set while tasks are
    running with set_limit(); schedule() then waits until fewer than that many tasks
    are in flight, and tasks already running are left alone.

    The counters are only mutated from the event loop that owns the task group;
    other components may read them but never change them.
    """

    def __init__(self, task_group: TaskGroup, concurrency: int):
        """Create a throttler adding its tasks to task_group.

        Args:
            task_group: Group that owns the created tasks
            concurrency: Upper bound on simultaneously running tasks, at least 1
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1: {concurrency}")
        self._task_group = task_group
        self._semaphore = Semaphore(concurrency)
        self._concurrency = concurrency
        self._limit = concurrency
        self._slot_freed = asyncio.Event()
        self._in_flight = 0
        self._peak_in_flight = 0
        self._scheduled = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def limit(self) -> int:
        return self._limit

    def set_limit(self, limit: int) -> int:
        """Change the soft limit, clamped to [1, concurrency]; returns the applied value."""
        self._limit = max(1, min(limit, self._concurrency))
        self._slot_freed.set()
        return self._limit

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    @property
    def scheduled(self) -> int:
        return self._scheduled

    async def schedule(self, coro: Coroutine, name=None) -> asyncio.Task:
        """Start coro as a task once a slot is free.

        Waits for a free slot before creating the task, so the caller is suspended
        while the throttler is saturated. The slot is released when the task completes.

        Args:
            coro: Coroutine to run; closed unstarted if scheduling fails
            name: Task name

        Returns:
            The task created in the group
        """
        try:
            while self._in_flight >= self._limit:
                self._slot_freed.clear()
                await self._slot_freed.wait()
            await self._semaphore.acquire()
        except BaseException:
            coro.close()
            raise

        slot = Throttler._Slot(self._release)
        self._in_flight += 1
        self._scheduled += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)

        async def wrapper():
            try:
                return await coro
            finally:
                slot.release()

        try:
            return self._task_group.create_task(wrapper(), name=name)
        except BaseException:
            coro.close()
            slot.release()
            raise

    def _release(self):
        self._in_flight -= 1
        self._semaphore.release()
        self._slot_freed.set()

    class _Slot:
        """One task's claim on a semaphore permit.

        A slot ensures the permit is released exactly once, even if release is
        attempted from both the task's cleanup and the scheduling error path.
        """

        def __init__(self, release_callback):
            self._released = False
            self._release_callback = release_callback

        def release(self):
            if not self._released:
                self._released = True
                self._release_callback()
