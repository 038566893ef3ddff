"""Read-to-gene overlap counting.

Counts, for one sample, the reads whose aligned blocks share at least one
base with any exon of each gene ("union" mode):

- strand is ignored
- a read counts once per gene however many of its exons it touches
- a read touching exons of several genes counts for each of them
- reads touching no exon are ignored

Example:
    >>> from exontally.core.counting import OverlapIndex, count_overlaps
    >>> index = OverlapIndex(model)
    >>> counts = count_overlaps(index, reads)
    >>> dict(zip(model.gene_ids, counts))
    {'G1': 12, 'G2': 0}
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from exontally.core.models import ExonModel

if TYPE_CHECKING:
    from exontally.io.bam import AlignedRead

logger = logging.getLogger(__name__)


class _SequenceExons(NamedTuple):
    """Exons on one sequence, sorted by start."""

    starts: np.ndarray
    ends: np.ndarray
    genes: np.ndarray
    max_length: int


class OverlapIndex:
    """Per-sequence sorted exon arrays for overlap queries.

    A query block ``[s, e)`` can only overlap exons starting in
    ``(s - max_length, e)``, so two binary searches bound the candidates.

    Attributes:
        gene_ids: Gene ids in model order; gene indices refer to this list.
    """

    def __init__(self, model: ExonModel) -> None:
        self.gene_ids = model.gene_ids
        per_sequence: dict[str, list[tuple[int, int, int]]] = {}
        for gene_index, exons in enumerate(model.exons_by_gene().values()):
            for exon in exons:
                per_sequence.setdefault(exon.seqid, []).append((exon.start, exon.end, gene_index))

        self._sequences: dict[str, _SequenceExons] = {}
        for seqid, rows in per_sequence.items():
            table = np.array(sorted(rows), dtype=np.int64)
            self._sequences[seqid] = _SequenceExons(
                starts=table[:, 0],
                ends=table[:, 1],
                genes=table[:, 2],
                max_length=int((table[:, 1] - table[:, 0]).max()),
            )

    @property
    def n_genes(self) -> int:
        """Number of genes in the index."""
        return len(self.gene_ids)

    def genes_for_block(self, seqid: str, start: int, end: int) -> np.ndarray:
        """Gene indices with an exon overlapping ``[start, end)`` on a sequence."""
        exons = self._sequences.get(seqid)
        if exons is None:
            return np.empty(0, dtype=np.int64)

        lo = int(np.searchsorted(exons.starts, start - exons.max_length, side="right"))
        hi = int(np.searchsorted(exons.starts, end, side="left"))
        if lo >= hi:
            return np.empty(0, dtype=np.int64)

        hits = exons.ends[lo:hi] > start
        return exons.genes[lo:hi][hits]

    def genes_for(self, read: AlignedRead) -> set[int]:
        """Gene indices whose exons overlap any aligned block of a read."""
        genes: set[int] = set()
        for block in read.blocks:
            genes.update(self.genes_for_block(read.seqid, block.start, block.end).tolist())
        return genes


class OverlapCounter:
    """Accumulate per-gene read counts for one sample.

    Attributes:
        index: Overlap index over the harmonized gene model.
        counts: Per-gene counts in model order.
        n_reads: Reads offered to the counter.
        n_assigned: Reads overlapping at least one gene.
        min_mapq: Reads with lower mapping quality are not counted.
    """

    def __init__(self, index: OverlapIndex, min_mapq: int = 0) -> None:
        self.index = index
        self.min_mapq = min_mapq
        self.counts = np.zeros(index.n_genes, dtype=np.int64)
        self.n_reads = 0
        self.n_assigned = 0

    def add(self, read: AlignedRead) -> None:
        """Count one read."""
        self.n_reads += 1
        if read.mapping_quality < self.min_mapq:
            return
        genes = self.index.genes_for(read)
        if genes:
            self.counts[list(genes)] += 1
            self.n_assigned += 1


def count_overlaps(
    index: OverlapIndex,
    reads: Iterable[AlignedRead],
    min_mapq: int = 0,
) -> np.ndarray:
    """Count reads overlapping each gene's exons.

    Args:
        index: Overlap index over the harmonized gene model.
        reads: Reads of one sample.
        min_mapq: Minimum mapping quality for a read to be counted.

    Returns:
        Integer array with one count per gene, in model order.
    """
    counter = OverlapCounter(index, min_mapq=min_mapq)
    for read in reads:
        counter.add(read)
    logger.debug(f"Assigned {counter.n_assigned}/{counter.n_reads} reads to genes")
    return counter.counts
