"""Per-sample processing: one pass over a BAM for counts and statistics.

A worker streams one sample's alignments once, feeding every read to both
the overlap counter and the statistics collector, and keeps nothing but
the resulting summaries. It is the unit of parallel work.

Example:
    >>> from exontally.core.worker import SampleTask, process_sample
    >>> task = SampleTask("S1", Path("S1.bam"), index, cut_points)
    >>> result = process_sample(task)
    >>> result.gene_counts.sum()
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

import attrs
import numpy as np

from exontally.core.counting import OverlapCounter, OverlapIndex
from exontally.core.introns import CutPoints
from exontally.core.stats import AlignmentStatsCollector, Histogram
from exontally.errors import SampleProcessingError
from exontally.io.bam import AlignmentReader

logger = logging.getLogger(__name__)


@attrs.frozen
class ReaderOptions:
    """Options controlling which reads a worker sees and counts.

    Attributes:
        quality_tag: Tag tabulated as the secondary quality.
        primary_only: Skip secondary and supplementary alignments.
        min_mapq: Minimum mapping quality for counting (statistics see all).
    """

    quality_tag: str = "AS"
    primary_only: bool = False
    min_mapq: int = 0


@attrs.frozen
class SampleTask:
    """Everything one worker needs for one sample.

    The index and cut-points are shared, read-only run state.
    """

    sample_id: str
    path: Path
    index: OverlapIndex
    cut_points: CutPoints
    options: ReaderOptions = attrs.Factory(ReaderOptions)


@attrs.define
class SampleResult:
    """Counts and statistics produced for one sample.

    Attributes:
        sample_id: Sample identifier.
        gene_counts: Reads per gene, in model order.
        histograms: Sparse (value, frequency) tables per metric.
        n_reads: Mapped reads seen.
        n_assigned: Reads counted towards at least one gene.
        duration_seconds: Processing time.
    """

    sample_id: str
    gene_counts: np.ndarray
    histograms: dict[str, Histogram]
    n_reads: int
    n_assigned: int
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "sample_id": self.sample_id,
            "gene_counts": self.gene_counts.tolist(),
            "histograms": {
                metric: [[value, freq] for value, freq in rows]
                for metric, rows in self.histograms.items()
            },
            "n_reads": self.n_reads,
            "n_assigned": self.n_assigned,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SampleResult:
        """Rebuild a result from ``to_dict`` output."""
        return cls(
            sample_id=data["sample_id"],
            gene_counts=np.asarray(data["gene_counts"], dtype=np.int64),
            histograms={
                metric: [(value, int(freq)) for value, freq in rows]
                for metric, rows in data["histograms"].items()
            },
            n_reads=int(data["n_reads"]),
            n_assigned=int(data["n_assigned"]),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
        )


def process_sample(task: SampleTask) -> SampleResult:
    """Count reads per gene and tabulate alignment statistics for a sample.

    Args:
        task: Sample task.

    Returns:
        SampleResult for the sample.

    Raises:
        SampleProcessingError: If the alignment file is missing, unreadable
            or malformed.
    """
    start_time = time.time()
    counter = OverlapCounter(task.index, min_mapq=task.options.min_mapq)
    collector = AlignmentStatsCollector(task.cut_points)

    try:
        with AlignmentReader(
            task.path,
            quality_tag=task.options.quality_tag,
            primary_only=task.options.primary_only,
        ) as reader:
            for read in reader:
                counter.add(read)
                collector.add(read)
    except (OSError, ValueError) as e:
        raise SampleProcessingError(task.sample_id, f"{type(e).__name__}: {e}") from e

    duration = time.time() - start_time
    logger.info(
        f"{task.sample_id}: {counter.n_reads} reads, "
        f"{counter.n_assigned} assigned to genes ({duration:.1f}s)"
    )
    return SampleResult(
        sample_id=task.sample_id,
        gene_counts=counter.counts,
        histograms=collector.histograms(),
        n_reads=counter.n_reads,
        n_assigned=counter.n_assigned,
        duration_seconds=duration,
    )
