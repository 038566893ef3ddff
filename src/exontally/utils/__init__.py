"""Utility functions for exontally.

- Interval operations (merge, span, gaps)
- Logging configuration

Example:
    >>> from exontally.utils.intervals import Interval, merge_intervals
    >>> merge_intervals([Interval(0, 10), Interval(5, 20)])
    [Interval(start=0, end=20)]
"""

from exontally.utils.intervals import (
    GenomicInterval,
    Interval,
    interval_gaps,
    merge_intervals,
    span,
)

__all__ = [
    "GenomicInterval",
    "Interval",
    "interval_gaps",
    "merge_intervals",
    "span",
]
