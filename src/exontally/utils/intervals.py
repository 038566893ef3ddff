"""Half-open interval types and the set operations built on them.

Exons, read blocks and intron gaps are all ``[start, end)`` ranges with
0-based starts. Only three operations are needed on sets of them:
merging, the bounding span, and the gaps a set leaves inside a region.

Example:
    >>> from exontally.utils.intervals import Interval, interval_gaps
    >>> interval_gaps([Interval(100, 200), Interval(300, 400)], Interval(100, 400))
    [Interval(start=200, end=300)]
"""

from typing import Iterable, NamedTuple


class Interval(NamedTuple):
    """A ``[start, end)`` range on an unnamed sequence."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


class GenomicInterval(NamedTuple):
    """A ``[start, end)`` range placed on a named sequence.

    Attributes:
        seqid: Sequence (chromosome or contig) name.
        start: First covered base, 0-based.
        end: One past the last covered base.
        strand: "+", "-" or "." when unknown.
    """

    seqid: str
    start: int
    end: int
    strand: str = "."

    @property
    def length(self) -> int:
        return self.end - self.start

    def to_interval(self) -> Interval:
        """Drop the sequence name and strand."""
        return Interval(self.start, self.end)

    def with_seqid(self, seqid: str) -> "GenomicInterval":
        """Return a copy placed on another sequence name."""
        return self._replace(seqid=seqid)


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Collapse intervals into sorted, disjoint runs.

    Touching intervals such as [0, 10) and [10, 20) become one run.

    Args:
        intervals: Any intervals (GenomicInterval is accepted too; only
            the coordinates are kept).

    Returns:
        Disjoint intervals ordered by start.
    """
    runs: list[Interval] = []
    for start, end in sorted((i.start, i.end) for i in intervals):
        if runs and start <= runs[-1].end:
            if end > runs[-1].end:
                runs[-1] = Interval(runs[-1].start, end)
        else:
            runs.append(Interval(start, end))
    return runs


def span(intervals: Iterable[Interval]) -> Interval:
    """Smallest interval covering every given interval.

    Raises:
        ValueError: If ``intervals`` is empty.
    """
    items = list(intervals)
    if not items:
        raise ValueError("Cannot compute the span of an empty interval set")
    return Interval(min(i.start for i in items), max(i.end for i in items))


def interval_gaps(
    intervals: Iterable[Interval],
    region: Interval | None = None,
) -> list[Interval]:
    """Stretches of ``region`` not covered by any interval.

    Args:
        intervals: Covering intervals; overlaps are allowed.
        region: Where to look for gaps. When omitted, the span of the
            intervals is used, so only interior gaps are reported.

    Returns:
        Uncovered intervals ordered by start.
    """
    runs = merge_intervals(intervals)
    if region is None:
        if not runs:
            return []
        region = Interval(runs[0].start, runs[-1].end)

    gaps = []
    cursor = region.start
    for run in runs:
        if run.start >= region.end:
            break
        if run.start > cursor:
            gaps.append(Interval(cursor, run.start))
        cursor = max(cursor, run.end)
    if cursor < region.end:
        gaps.append(Interval(cursor, region.end))
    return gaps
