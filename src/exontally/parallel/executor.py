"""Worker-pool execution of independent exontally tasks.

Two kinds of work fan out through here: batches of genes during intron
profiling and whole samples during counting. Every task yields exactly
one :class:`TaskResult`; an exception or a timeout in one task is
recorded on that task's result and never disturbs the others.

``map_items`` blocks until all tasks are settled, so callers can treat
it as a barrier between pipeline phases.

Example:
    >>> from exontally.parallel.executor import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=8, timeout=3600)
    >>> results, stats = executor.map_items(process_sample, tasks, ids)
"""

from __future__ import annotations

import logging
import os
import platform
import resource
import time
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from enum import Enum
from itertools import islice
from typing import Any, Callable, Sequence, TypeVar

import attrs
import psutil

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int, str], None]

# How often pooled execution wakes up to look for overdue tasks (seconds)
POLL_INTERVAL = 0.5

_MB = 1024 * 1024


class ExecutorBackend(Enum):
    """How tasks are run."""

    SERIAL = "serial"
    THREADS = "threads"
    PROCESSES = "processes"


def _rounded(digits: int) -> Callable[[Any, Any, Any], Any]:
    """Build an ``attrs.asdict`` serializer rounding float fields."""

    def serialize(inst: Any, field: Any, value: Any) -> Any:
        if isinstance(value, float):
            return round(value, digits)
        return value

    return serialize


@attrs.define(slots=True)
class MemoryStats:
    """Snapshot of process and system memory, in megabytes."""

    current_mb: float
    peak_mb: float
    available_mb: float
    percent_used: float

    def to_dict(self) -> dict[str, Any]:
        return attrs.asdict(self, value_serializer=_rounded(2))


@attrs.define(slots=True)
class TaskResult:
    """Outcome of one task.

    Attributes:
        task_id: Identifier the task was submitted under.
        success: Whether the task returned normally.
        result: Return value of the task function (None on failure).
        error: Error message on failure.
        error_type: Exception class name on failure.
        timed_out: Whether the task was abandoned for exceeding the timeout.
        duration_seconds: Wall time spent on the task.
    """

    task_id: str
    success: bool
    result: Any | None = None
    error: str | None = None
    error_type: str | None = None
    timed_out: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Summary without the (possibly large) return value."""
        return attrs.asdict(
            self,
            filter=lambda field, _: field.name != "result",
            value_serializer=_rounded(3),
        )


@attrs.define(slots=True)
class ExecutionStats:
    """Aggregate figures for one ``map_items`` call."""

    total_tasks: int
    successful: int
    failed: int
    timed_out: int
    total_duration: float
    mean_task_duration: float
    max_task_duration: float
    peak_memory_mb: float | None = None

    @classmethod
    def from_results(
        cls, results: Sequence[TaskResult], wall_time: float
    ) -> ExecutionStats:
        durations = [r.duration_seconds for r in results] or [0.0]
        n_ok = sum(r.success for r in results)
        return cls(
            total_tasks=len(results),
            successful=n_ok,
            failed=len(results) - n_ok,
            timed_out=sum(r.timed_out for r in results),
            total_duration=wall_time,
            mean_task_duration=sum(durations) / len(durations),
            max_task_duration=max(durations),
            peak_memory_mb=get_memory_stats().peak_mb if results else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return attrs.asdict(self, value_serializer=_rounded(3))


def _peak_rss_mb() -> float:
    """Peak resident size of this process or any reaped child."""
    peak = max(
        resource.getrusage(resource.RUSAGE_SELF).ru_maxrss,
        resource.getrusage(resource.RUSAGE_CHILDREN).ru_maxrss,
    )
    # ru_maxrss is reported in bytes on macOS and in kilobytes elsewhere
    if platform.system() == "Darwin":
        return peak / _MB
    return peak / 1024


def get_memory_stats() -> MemoryStats:
    """Measure current memory usage with psutil."""
    system = psutil.virtual_memory()
    return MemoryStats(
        current_mb=psutil.Process().memory_info().rss / _MB,
        peak_mb=_peak_rss_mb(),
        available_mb=system.available / _MB,
        percent_used=system.percent,
    )


def _run_task(func: Callable[[T], R], task_id: str, item: T) -> TaskResult:
    # Module level so process pools can pickle it.
    t0 = time.perf_counter()
    try:
        value = func(item)
    except Exception as e:
        return TaskResult(
            task_id,
            False,
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=time.perf_counter() - t0,
        )
    return TaskResult(task_id, True, result=value, duration_seconds=time.perf_counter() - t0)


def _terminate_children() -> None:
    for child in psutil.Process().children(recursive=True):
        try:
            child.terminate()
        except psutil.NoSuchProcess:
            pass
    logger.debug("Terminated pool workers still busy with timed-out tasks")


class ParallelExecutor:
    """Apply a function to many items on a serial, thread or process backend.

    Results come back in submission order. A task that raises is reported
    as failed; a task still running ``timeout`` seconds after it started
    is reported as timed out and abandoned. Timeouts need a pooled backend
    because the serial backend runs tasks in the calling thread.

    Example:
        >>> executor = ParallelExecutor(n_workers=4, backend="processes")
        >>> results, stats = executor.map_items(func, items)
        >>> print(f"{stats.successful}/{stats.total_tasks} tasks succeeded")
    """

    def __init__(
        self,
        n_workers: int = 1,
        backend: ExecutorBackend | str = ExecutorBackend.PROCESSES,
        timeout: float | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Create an executor.

        Args:
            n_workers: Pool size. A single worker without a timeout runs
                serially.
            backend: Backend enum member or its string value.
            timeout: Per-task limit in seconds, or None for no limit.
            progress_callback: Receives (settled, total, task_id) after
                each task settles.
        """
        self.n_workers = max(1, n_workers)
        self.backend = ExecutorBackend(backend)
        self.timeout = timeout
        self.progress_callback = progress_callback

        if self.n_workers == 1 and timeout is None:
            self.backend = ExecutorBackend.SERIAL
        elif self.backend is ExecutorBackend.SERIAL and timeout is not None:
            logger.warning("The serial backend cannot enforce task timeouts")

    def map_items(
        self,
        func: Callable[[T], R],
        items: Sequence[T],
        task_ids: Sequence[str] | None = None,
    ) -> tuple[list[TaskResult], ExecutionStats]:
        """Run ``func`` on every item.

        Args:
            func: Task function. The process backend needs it picklable,
                i.e. defined at module level or wrapped in functools.partial.
            items: Task inputs.
            task_ids: One identifier per item; ``item_000000`` style ids
                are generated when omitted.

        Returns:
            Results in item order and the stats for the whole call.

        Raises:
            ValueError: If ``task_ids`` and ``items`` differ in length.
        """
        ids = list(task_ids) if task_ids is not None else [
            f"item_{n:06d}" for n in range(len(items))
        ]
        if len(ids) != len(items):
            raise ValueError(
                f"Got {len(ids)} task ids for {len(items)} items"
            )
        if not items:
            return [], ExecutionStats.from_results([], 0.0)

        logger.debug(
            f"Running {len(items)} tasks on {self.n_workers} "
            f"{self.backend.value} worker(s)"
        )
        t0 = time.perf_counter()
        if self.backend is ExecutorBackend.SERIAL:
            results = self._run_serial(func, items, ids)
        else:
            results = self._run_pooled(func, items, ids)
        stats = ExecutionStats.from_results(results, time.perf_counter() - t0)

        logger.debug(
            f"{stats.successful}/{stats.total_tasks} tasks succeeded "
            f"in {stats.total_duration:.1f}s"
        )
        return results, stats

    def _notify(self, settled: int, total: int, task_id: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(settled, total, task_id)

    def _run_serial(
        self, func: Callable, items: Sequence, ids: list[str]
    ) -> list[TaskResult]:
        results = []
        for task_id, item in zip(ids, items):
            results.append(_run_task(func, task_id, item))
            self._notify(len(results), len(items), task_id)
        return results

    def _open_pool(self) -> Executor:
        pool_cls = (
            ThreadPoolExecutor
            if self.backend is ExecutorBackend.THREADS
            else ProcessPoolExecutor
        )
        return pool_cls(max_workers=self.n_workers)

    def _recycle(self, pool: Executor) -> Executor:
        """Replace a process pool whose workers are all stuck on abandoned tasks."""
        logger.warning("All workers are busy with timed-out tasks; restarting the pool")
        pool.shutdown(wait=False, cancel_futures=True)
        _terminate_children()
        return self._open_pool()

    def _run_pooled(
        self, func: Callable, items: Sequence, ids: list[str]
    ) -> list[TaskResult]:
        """Run tasks with at most ``n_workers`` of them handed to the pool.

        Keeping the pool's own queue empty means a submitted task starts on
        a worker right away, so its timeout clock measures execution only.
        An abandoned task still holds its worker until it returns, and its
        slot stays taken until then.
        """
        total = len(items)
        slots: list[TaskResult | None] = [None] * total
        settled = 0
        submitted = 0
        gave_up = False

        backlog = iter(enumerate(zip(ids, items)))
        position: dict[Future, int] = {}
        first_seen_running: dict[Future, float] = {}
        outstanding: set[Future] = set()
        stuck: set[Future] = set()
        poll = POLL_INTERVAL if self.timeout is not None else None

        pool = self._open_pool()
        try:
            while True:
                stuck = {fut for fut in stuck if not fut.done()}
                free = self.n_workers - len(outstanding) - len(stuck)
                if (
                    free <= 0
                    and not outstanding
                    and submitted < total
                    and self.backend is ExecutorBackend.PROCESSES
                ):
                    pool = self._recycle(pool)
                    stuck.clear()
                    free = self.n_workers
                for n, (task_id, item) in islice(backlog, max(free, 0)):
                    fut = pool.submit(_run_task, func, task_id, item)
                    position[fut] = n
                    outstanding.add(fut)
                    submitted += 1
                if not outstanding and submitted == total:
                    break

                finished, _ = wait(
                    outstanding | stuck, timeout=poll, return_when=FIRST_COMPLETED
                )
                for fut in finished:
                    if fut not in outstanding:
                        continue
                    outstanding.discard(fut)
                    n = position[fut]
                    slots[n] = self._collect(fut, ids[n])
                    settled += 1
                    self._notify(settled, total, ids[n])

                if self.timeout is None:
                    continue
                now = time.perf_counter()
                for fut in list(outstanding):
                    if fut.running():
                        first_seen_running.setdefault(fut, now)
                    started = first_seen_running.get(fut)
                    if started is None or now - started <= self.timeout:
                        continue
                    n = position[fut]
                    logger.warning(f"Task {ids[n]} exceeded {self.timeout:g}s; abandoning it")
                    slots[n] = TaskResult(
                        ids[n],
                        False,
                        error=f"timed out after {self.timeout:g}s",
                        error_type="TimeoutError",
                        timed_out=True,
                        duration_seconds=now - started,
                    )
                    if not fut.cancel():
                        stuck.add(fut)
                    outstanding.discard(fut)
                    gave_up = True
                    settled += 1
                    self._notify(settled, total, ids[n])
        finally:
            pool.shutdown(wait=not gave_up, cancel_futures=True)
            if gave_up and self.backend is ExecutorBackend.PROCESSES:
                _terminate_children()

        return [r for r in slots if r is not None]

    @staticmethod
    def _collect(fut: Future, task_id: str) -> TaskResult:
        try:
            return fut.result()
        except Exception as e:
            # a crashed worker or an unpicklable return value
            return TaskResult(
                task_id,
                False,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )


def get_optimal_workers(
    max_workers: int | None = None,
    memory_per_worker_mb: int = 1000,
) -> int:
    """Pick a worker count that fits both CPUs and available memory.

    Args:
        max_workers: Upper bound; defaults to the CPU count.
        memory_per_worker_mb: Memory budget assumed per worker.

    Returns:
        A worker count of at least 1.
    """
    cpus = os.cpu_count() or 1
    by_memory = int(get_memory_stats().available_mb // memory_per_worker_mb)
    ceiling = cpus if max_workers is None else min(max_workers, cpus)
    return max(1, min(ceiling, by_memory))
