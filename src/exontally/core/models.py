"""Exon-by-gene model consumed by the counting pipeline.

The model is a two-level container: an ordered mapping from gene id to
that gene's exons. Keeping exons grouped by gene lets per-gene operations
(spans, intron gaps) stay local to one entry.

Example:
    >>> from exontally.core.models import ExonModel
    >>> from exontally.utils.intervals import GenomicInterval
    >>> model = ExonModel({
    ...     "G1": [GenomicInterval("Chr1", 100, 200), GenomicInterval("Chr1", 300, 400)],
    ... })
    >>> model.span("G1")
    GenomicInterval(seqid='Chr1', start=100, end=400, strand='.')
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from typing import Iterator

from exontally.utils.intervals import GenomicInterval, span as bounding_span


class ExonModel:
    """Ordered mapping from gene id to the gene's exon intervals.

    Gene order is insertion order and defines count-matrix row order.
    Instances are treated as immutable once built.

    Attributes:
        extra_sequence_names: Sequence names declared by the annotation
            that carry no exons (e.g. GFF3 ``##sequence-region`` lines).
    """

    def __init__(
        self,
        exons_by_gene: Mapping[str, Iterable[GenomicInterval]],
        extra_sequence_names: Iterable[str] = (),
    ) -> None:
        """Build the model.

        Args:
            exons_by_gene: Mapping of gene id to exon intervals.
            extra_sequence_names: Additional declared sequence names.

        Raises:
            ValueError: If a gene has no exons or spans several sequences.
        """
        genes: dict[str, tuple[GenomicInterval, ...]] = {}
        for gene_id, exons in exons_by_gene.items():
            exons = tuple(GenomicInterval(*e) for e in exons)
            if not exons:
                raise ValueError(f"Gene {gene_id} has no exons")
            seqids = {e.seqid for e in exons}
            if len(seqids) > 1:
                raise ValueError(
                    f"Exons of gene {gene_id} lie on several sequences: {', '.join(sorted(seqids))}"
                )
            for exon in exons:
                if exon.start < 0 or exon.end <= exon.start:
                    raise ValueError(f"Invalid exon {exon} in gene {gene_id}")
            genes[gene_id] = exons

        self._genes = genes
        self.extra_sequence_names = frozenset(extra_sequence_names)

    def __len__(self) -> int:
        return len(self._genes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._genes)

    def __contains__(self, gene_id: object) -> bool:
        return gene_id in self._genes

    def __getitem__(self, gene_id: str) -> tuple[GenomicInterval, ...]:
        return self._genes[gene_id]

    def __repr__(self) -> str:
        return f"ExonModel(n_genes={len(self)}, n_sequences={len(self.sequence_names())})"

    @property
    def n_genes(self) -> int:
        """Number of genes."""
        return len(self._genes)

    @property
    def gene_ids(self) -> list[str]:
        """Gene ids in model order."""
        return list(self._genes)

    def exons_by_gene(self) -> dict[str, tuple[GenomicInterval, ...]]:
        """Return the gene id to exon mapping in model order."""
        return dict(self._genes)

    def sequence_names(self) -> set[str]:
        """All sequence names known to the model."""
        names = {exons[0].seqid for exons in self._genes.values()}
        return names | set(self.extra_sequence_names)

    def seqid(self, gene_id: str) -> str:
        """Sequence name carrying a gene."""
        return self._genes[gene_id][0].seqid

    def span(self, gene_id: str) -> GenomicInterval:
        """Bounding interval of a gene's exons."""
        exons = self._genes[gene_id]
        bounds = bounding_span(e.to_interval() for e in exons)
        strands = {e.strand for e in exons}
        return GenomicInterval(
            exons[0].seqid,
            bounds.start,
            bounds.end,
            strands.pop() if len(strands) == 1 else ".",
        )

    def renamed(self, table: Mapping[str, str]) -> ExonModel:
        """Return a copy with sequence names passed through a rename table.

        Names absent from the table are kept unchanged.
        """
        genes = {
            gene_id: [e.with_seqid(table.get(e.seqid, e.seqid)) for e in exons]
            for gene_id, exons in self._genes.items()
        }
        extra = {table.get(name, name) for name in self.extra_sequence_names}
        return ExonModel(genes, extra_sequence_names=extra)

    def fingerprint(self) -> str:
        """Content hash identifying this model version."""
        digest = hashlib.sha256()
        for gene_id, exons in self._genes.items():
            digest.update(gene_id.encode())
            for e in exons:
                digest.update(f"|{e.seqid}:{e.start}-{e.end}".encode())
            digest.update(b"\n")
        for name in sorted(self.extra_sequence_names):
            digest.update(f"#{name}".encode())
        return digest.hexdigest()
