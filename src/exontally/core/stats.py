"""Alignment statistics for one sample.

Tabulates four sparse frequency tables over a sample's mapped reads:

- ``gap_count``: number of skipped regions per read
- ``mapping_quality``: aligner mapping quality
- ``width_bin``: reference width, binned with the run's cut-points
- ``secondary_quality``: value of the secondary quality tag (reads
  without the tag are left out)

Values that never occur are omitted. The first three tables always sum to
the number of reads seen.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

import numpy as np

from exontally.core.introns import CutPoints

if TYPE_CHECKING:
    from exontally.io.bam import AlignedRead

METRIC_GAP_COUNT = "gap_count"
METRIC_MAPPING_QUALITY = "mapping_quality"
METRIC_WIDTH_BIN = "width_bin"
METRIC_SECONDARY_QUALITY = "secondary_quality"

METRICS = (
    METRIC_GAP_COUNT,
    METRIC_MAPPING_QUALITY,
    METRIC_WIDTH_BIN,
    METRIC_SECONDARY_QUALITY,
)

Histogram = list[tuple[Any, int]]


class AlignmentStatsCollector:
    """Accumulate alignment statistics for one sample.

    Attributes:
        cut_points: Width-bin boundaries shared by every sample.
        n_reads: Number of reads added.
    """

    def __init__(self, cut_points: CutPoints) -> None:
        self.cut_points = cut_points
        self._labels = cut_points.labels
        self._gap_counts: Counter = Counter()
        self._mapq: Counter = Counter()
        self._width_bins = np.zeros(len(self._labels), dtype=np.int64)
        self._quality: Counter = Counter()
        self.n_reads = 0

    def add(self, read: AlignedRead) -> None:
        """Record one read."""
        self.n_reads += 1
        self._gap_counts[read.n_gaps] += 1
        self._mapq[read.mapping_quality] += 1
        self._width_bins[self.cut_points.bin_index(read.width)] += 1
        if read.quality_tag is not None:
            self._quality[read.quality_tag] += 1

    def histograms(self) -> dict[str, Histogram]:
        """Sparse (value, frequency) tables per metric, sorted by value.

        Width bins are listed in boundary order.
        """
        return {
            METRIC_GAP_COUNT: sorted(self._gap_counts.items()),
            METRIC_MAPPING_QUALITY: sorted(self._mapq.items()),
            METRIC_WIDTH_BIN: [
                (label, int(n)) for label, n in zip(self._labels, self._width_bins) if n > 0
            ],
            METRIC_SECONDARY_QUALITY: sorted(self._quality.items(), key=_sort_key),
        }


def _sort_key(item: tuple[Any, int]) -> tuple[int, Any]:
    # Tag values may mix numbers and strings across aligners
    value = item[0]
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))
