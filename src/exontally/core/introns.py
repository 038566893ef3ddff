"""Intron-length profiling and alignment-width cut-points.

For each gene, the gaps of its exon set within the gene's own span are the
introns. Gap widths pooled across all genes give empirical quantiles that,
together with the read length, define the bins used for alignment-width
histograms:

    0, read_length, min, Q1, median, Q3, max, inf

Cut-points are computed once per run, before any sample is processed, and
are immutable afterwards.

Example:
    >>> from exontally.core.introns import compute_cut_points
    >>> cuts = compute_cut_points([50, 100, 200, 400], read_length=100)
    >>> cuts.boundaries
    (0.0, 50.0, 87.5, 100.0, 150.0, 250.0, 400.0, inf)
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections.abc import Iterable, Sequence

import attrs
import numpy as np

from exontally.core.models import ExonModel
from exontally.parallel.executor import ParallelExecutor
from exontally.utils.intervals import GenomicInterval, Interval, interval_gaps

logger = logging.getLogger(__name__)

QUANTILE_PROBS = (0.0, 0.25, 0.5, 0.75, 1.0)


# =============================================================================
# Per-gene gaps
# =============================================================================


def gene_gaps(exons: Iterable[GenomicInterval]) -> list[Interval]:
    """Gaps of a gene's exons within the gene's span.

    Args:
        exons: Exons of one gene.

    Returns:
        Uncovered sub-intervals of the span, sorted.
    """
    return interval_gaps(Interval(e.start, e.end) for e in exons)


def gap_lengths_for_genes(batch: Sequence[tuple[GenomicInterval, ...]]) -> list[int]:
    """Gap widths for a batch of genes (one executor task)."""
    return [gap.length for exons in batch for gap in gene_gaps(exons)]


def intron_lengths(
    model: ExonModel,
    executor: ParallelExecutor | None = None,
    batch_size: int = 2000,
) -> np.ndarray:
    """Pool intron (gap) widths over every gene of a model.

    Genes are processed independently in batches; completion order does
    not matter since the pool is unordered.

    Args:
        model: Gene model.
        executor: Executor for fan-out (serial when None).
        batch_size: Genes per task.

    Returns:
        1-D integer array of gap widths.

    Raises:
        RuntimeError: If any batch fails.
    """
    genes = list(model.exons_by_gene().values())
    batches = [genes[i : i + batch_size] for i in range(0, len(genes), batch_size)]
    executor = executor or ParallelExecutor(n_workers=1)

    results, _ = executor.map_items(
        gap_lengths_for_genes,
        batches,
        [f"genes_{i:05d}" for i in range(len(batches))],
    )

    failed = [r for r in results if not r.success]
    if failed:
        raise RuntimeError(f"Intron profiling failed for {failed[0].task_id}: {failed[0].error}")

    lengths = [length for r in results for length in r.result]
    logger.debug(f"Collected {len(lengths)} intron lengths from {model.n_genes} genes")
    return np.asarray(lengths, dtype=np.int64)


# =============================================================================
# Cut-points
# =============================================================================


def _format_bound(value: float) -> str:
    if math.isinf(value):
        return "Inf"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


@attrs.frozen
class CutPoints:
    """Strictly increasing width-bin boundaries.

    Bins are right-closed intervals ``(a, b]``.

    Attributes:
        boundaries: Boundaries from 0 to +inf.
        read_length: Read length used as a boundary.
        gap_quantiles: Min, Q1, median, Q3 and max of the intron pool
            (empty if no gene has an intron).
        n_gaps: Number of introns pooled.
    """

    boundaries: tuple[float, ...] = attrs.field(converter=lambda b: tuple(float(x) for x in b))
    read_length: int = 0
    gap_quantiles: tuple[float, ...] = attrs.field(default=(), converter=tuple)
    n_gaps: int = 0

    @boundaries.validator
    def _check_boundaries(self, attribute, value) -> None:
        if len(value) < 2:
            raise ValueError("Cut-points need at least two boundaries")
        if value[0] != 0.0 or not math.isinf(value[-1]):
            raise ValueError("Cut-points must start at 0 and end at infinity")
        if any(b <= a for a, b in zip(value, value[1:])):
            raise ValueError(f"Cut-points must be strictly increasing: {value}")

    @property
    def labels(self) -> list[str]:
        """Bin labels in order, e.g. ``(0,100]``."""
        return [
            f"({_format_bound(a)},{_format_bound(b)}]"
            for a, b in zip(self.boundaries, self.boundaries[1:])
        ]

    def bin_index(self, width: float) -> int:
        """Index of the bin holding a width.

        Raises:
            ValueError: If the width is not positive.
        """
        if width <= 0:
            raise ValueError(f"Alignment width must be positive, got {width}")
        return int(np.searchsorted(self.boundaries, width, side="left")) - 1

    def label_for(self, width: float) -> str:
        """Bin label for a width."""
        return self.labels[self.bin_index(width)]

    def fingerprint(self) -> str:
        """Content hash identifying these cut-points."""
        text = ",".join(repr(b) for b in self.boundaries)
        return hashlib.sha256(text.encode()).hexdigest()


def compute_cut_points(gap_lengths: Iterable[int], read_length: int) -> CutPoints:
    """Form width cut-points from pooled intron lengths.

    Args:
        gap_lengths: Intron widths from every gene.
        read_length: Sequencing read length.

    Returns:
        CutPoints ``0, read_length, min, Q1, median, Q3, max, inf``,
        deduplicated and sorted.

    Raises:
        ValueError: If read_length is not positive.
    """
    if read_length <= 0:
        raise ValueError(f"read_length must be positive, got {read_length}")

    lengths = np.asarray(list(gap_lengths), dtype=np.float64)
    quantiles: tuple[float, ...] = ()
    if lengths.size:
        quantiles = tuple(float(q) for q in np.quantile(lengths, QUANTILE_PROBS))

    boundaries = sorted({0.0, float(read_length), *quantiles, math.inf})
    cut_points = CutPoints(
        boundaries=boundaries,
        read_length=read_length,
        gap_quantiles=quantiles,
        n_gaps=int(lengths.size),
    )
    logger.info(
        f"Width cut-points from {cut_points.n_gaps} introns: "
        + ", ".join(_format_bound(b) for b in cut_points.boundaries)
    )
    return cut_points


def profile_cut_points(
    model: ExonModel,
    read_length: int,
    executor: ParallelExecutor | None = None,
    batch_size: int = 2000,
) -> CutPoints:
    """Profile a model's introns and fix the width cut-points."""
    return compute_cut_points(
        intron_lengths(model, executor=executor, batch_size=batch_size),
        read_length,
    )
