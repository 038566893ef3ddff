"""Cross-sample aggregation.

Merges per-sample results into:

- a dense gene x sample count matrix (genes in model order, samples in
  discovery order)
- one long-form statistic table per metric, every row stamped with its
  sample and metric
- the "good alignments" view: mapping-quality rows at or above a
  threshold, annotated with each sample's treatment group

Sample identifiers are derived from input file names and must be unique.

Example:
    >>> from exontally.core.aggregate import aggregate, discover_samples
    >>> samples = discover_samples("bams/")
    >>> merged = aggregate(model.gene_ids, results, [s.sample_id for s in samples])
    >>> merged.counts.values.shape
    (20000, 6)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, NamedTuple

import attrs
import numpy as np

from exontally.core.stats import METRIC_MAPPING_QUALITY, METRICS
from exontally.core.worker import SampleResult
from exontally.errors import DuplicateSampleIdentityError

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = r"[._]"
DEFAULT_GOOD_MAPQ = 30
MISSING_GROUP = "NA"


# =============================================================================
# Sample Discovery
# =============================================================================


@attrs.frozen
class SampleInput:
    """An alignment file and the sample id derived from its name."""

    sample_id: str
    path: Path


def derive_sample_id(path: Path | str, separator: str = DEFAULT_SEPARATOR) -> str:
    """Sample id from a file name: the first token before a separator.

    Args:
        path: Alignment file path.
        separator: Regex matching token separators.

    Returns:
        Sample identifier (``S1_L001.sorted.bam`` -> ``S1``).

    Raises:
        ValueError: If the name yields no token.
    """
    name = Path(path).name
    tokens = [t for t in re.split(separator, name) if t]
    if not tokens:
        raise ValueError(f"Cannot derive a sample id from file name {name!r}")
    return tokens[0]


def check_unique_ids(samples: Iterable[SampleInput]) -> None:
    """Ensure derived sample ids are unique.

    Raises:
        DuplicateSampleIdentityError: On the first id claimed by two files.
    """
    by_id: dict[str, list[str]] = {}
    for sample in samples:
        by_id.setdefault(sample.sample_id, []).append(str(sample.path))
    for sample_id, paths in by_id.items():
        if len(paths) > 1:
            raise DuplicateSampleIdentityError(sample_id, paths)


def discover_samples(
    directory: Path | str,
    pattern: str = "*.bam",
    separator: str = DEFAULT_SEPARATOR,
) -> list[SampleInput]:
    """Find alignment files and derive their sample ids.

    Files are returned in sorted file-name order, which fixes the column
    order of every output.

    Args:
        directory: Directory holding alignment files.
        pattern: Glob selecting alignment files.
        separator: Regex splitting file names into tokens.

    Returns:
        Sample inputs in discovery order.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
        DuplicateSampleIdentityError: If two files derive the same id.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Alignment directory not found: {directory}")

    paths = sorted((p for p in directory.glob(pattern) if p.is_file()), key=lambda p: p.name)
    samples = [SampleInput(derive_sample_id(p, separator), p) for p in paths]
    check_unique_ids(samples)

    logger.info(f"Discovered {len(samples)} alignment files in {directory}")
    return samples


# =============================================================================
# Tables
# =============================================================================


@attrs.define
class CountMatrix:
    """Dense gene x sample read counts.

    Attributes:
        gene_ids: Row labels in model order.
        sample_ids: Column labels in discovery order.
        values: Integer array of shape (genes, samples).
    """

    gene_ids: list[str]
    sample_ids: list[str]
    values: np.ndarray

    def __attrs_post_init__(self) -> None:
        expected = (len(self.gene_ids), len(self.sample_ids))
        if self.values.shape != expected:
            raise ValueError(f"Count matrix shape {self.values.shape} != {expected}")

    def column(self, sample_id: str) -> np.ndarray:
        """Counts of one sample in model order."""
        return self.values[:, self.sample_ids.index(sample_id)]

    def get(self, gene_id: str, sample_id: str) -> int:
        """Count for one gene in one sample."""
        return int(self.values[self.gene_ids.index(gene_id), self.sample_ids.index(sample_id)])


class StatisticRow(NamedTuple):
    """One row of a long-form statistic table."""

    value: Any
    frequency: int
    sample: str
    metric: str


class GoodAlignmentRow(NamedTuple):
    """A mapping-quality row annotated with its sample's group."""

    value: int
    frequency: int
    sample: str
    metric: str
    group: str


@attrs.define
class StatisticTable:
    """Long-form statistic table for one metric across samples."""

    metric: str
    rows: list[StatisticRow] = attrs.Factory(list)

    def for_sample(self, sample_id: str) -> list[StatisticRow]:
        """Rows belonging to one sample."""
        return [r for r in self.rows if r.sample == sample_id]

    def total(self, sample_id: str) -> int:
        """Summed frequency for one sample."""
        return sum(r.frequency for r in self.for_sample(sample_id))


@attrs.define
class AggregateResult:
    """Merged outputs of a run."""

    counts: CountMatrix
    tables: dict[str, StatisticTable]
    good_alignments: list[GoodAlignmentRow]


# =============================================================================
# Merging
# =============================================================================


def _ordered_results(
    results: Iterable[SampleResult],
    sample_order: Sequence[str],
) -> list[SampleResult]:
    by_id = {r.sample_id: r for r in results}
    unknown = set(by_id) - set(sample_order)
    if unknown:
        raise ValueError(f"Results for undiscovered samples: {', '.join(sorted(unknown))}")
    return [by_id[sid] for sid in sample_order if sid in by_id]


def build_count_matrix(
    gene_ids: Sequence[str],
    results: Iterable[SampleResult],
    sample_order: Sequence[str],
) -> CountMatrix:
    """Column-bind per-sample gene counts in discovery order.

    Only samples with a result become columns.

    Raises:
        ValueError: If a count vector doesn't match the gene list.
    """
    ordered = _ordered_results(results, sample_order)
    for result in ordered:
        if len(result.gene_counts) != len(gene_ids):
            raise ValueError(
                f"{result.sample_id}: {len(result.gene_counts)} counts for {len(gene_ids)} genes"
            )

    if ordered:
        values = np.column_stack([r.gene_counts for r in ordered]).astype(np.int64)
    else:
        values = np.zeros((len(gene_ids), 0), dtype=np.int64)

    return CountMatrix(
        gene_ids=list(gene_ids),
        sample_ids=[r.sample_id for r in ordered],
        values=values,
    )


def stack_histograms(
    results: Iterable[SampleResult],
    sample_order: Sequence[str],
) -> dict[str, StatisticTable]:
    """Stack per-sample histograms into one long-form table per metric."""
    tables = {metric: StatisticTable(metric) for metric in METRICS}
    for result in _ordered_results(results, sample_order):
        for metric, rows in result.histograms.items():
            table = tables.setdefault(metric, StatisticTable(metric))
            table.rows.extend(
                StatisticRow(value, frequency, result.sample_id, metric)
                for value, frequency in rows
            )
    return tables


def good_alignments(
    mapq_table: StatisticTable,
    groups: Mapping[str, str],
    min_mapq: int = DEFAULT_GOOD_MAPQ,
) -> list[GoodAlignmentRow]:
    """Mapping-quality rows at or above a threshold, with sample groups.

    Args:
        mapq_table: Long-form mapping-quality table.
        groups: Caller-supplied sample -> group mapping.
        min_mapq: Minimum mapping quality kept.

    Returns:
        Filtered rows annotated with the sample's group (``NA`` when the
        sample is missing from the mapping).
    """
    rows = []
    ungrouped = set()
    for row in mapq_table.rows:
        if row.value < min_mapq:
            continue
        group = groups.get(row.sample)
        if group is None:
            ungrouped.add(row.sample)
            group = MISSING_GROUP
        rows.append(GoodAlignmentRow(row.value, row.frequency, row.sample, row.metric, group))

    if ungrouped and groups:
        logger.warning(f"No group given for samples: {', '.join(sorted(ungrouped))}")
    return rows


def aggregate(
    gene_ids: Sequence[str],
    results: Iterable[SampleResult],
    sample_order: Sequence[str],
    groups: Mapping[str, str] | None = None,
    good_mapq: int = DEFAULT_GOOD_MAPQ,
) -> AggregateResult:
    """Merge all per-sample results of a run.

    Args:
        gene_ids: Gene ids in model order.
        results: Results of succeeded samples.
        sample_order: Sample ids in discovery order.
        groups: Sample -> treatment group mapping.
        good_mapq: Threshold for the good-alignments view.

    Returns:
        AggregateResult.
    """
    results = list(results)
    tables = stack_histograms(results, sample_order)
    return AggregateResult(
        counts=build_count_matrix(gene_ids, results, sample_order),
        tables=tables,
        good_alignments=good_alignments(
            tables[METRIC_MAPPING_QUALITY], groups or {}, min_mapq=good_mapq
        ),
    )
