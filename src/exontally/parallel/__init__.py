"""Parallelization utilities for exontally.

- Worker pool execution with serial, thread and process backends
- Per-task failure capture and timeouts
- Memory statistics

Example:
    >>> from exontally.parallel import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=4)
    >>> results, stats = executor.map_items(func, items)
"""

from exontally.parallel.executor import (
    ExecutionStats,
    ExecutorBackend,
    MemoryStats,
    ParallelExecutor,
    TaskResult,
    get_memory_stats,
    get_optimal_workers,
)

__all__ = [
    "ExecutionStats",
    "ExecutorBackend",
    "MemoryStats",
    "ParallelExecutor",
    "TaskResult",
    "get_memory_stats",
    "get_optimal_workers",
]
