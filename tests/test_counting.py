"""Tests for exontally.core.counting module."""

import numpy as np
import pytest

from exontally.core.counting import OverlapCounter, OverlapIndex, count_overlaps
from exontally.core.models import ExonModel
from exontally.io.bam import AlignedRead
from exontally.utils.intervals import Interval


def read(seqid: str, *blocks: tuple[int, int], mapq: int = 60) -> AlignedRead:
    """Build a read from (start, end) blocks."""
    return AlignedRead(
        seqid=seqid,
        blocks=tuple(Interval(s, e) for s, e in blocks),
        mapping_quality=mapq,
        n_gaps=len(blocks) - 1,
    )


@pytest.fixture
def index(simple_model: ExonModel) -> OverlapIndex:
    return OverlapIndex(simple_model)


class TestOverlapIndex:
    """Tests for overlap queries."""

    def test_read_inside_exon(self, index: OverlapIndex) -> None:
        """[150,180) on Chr1 hits G1."""
        assert index.genes_for(read("Chr1", (150, 180))) == {0}

    def test_read_inside_intron(self, index: OverlapIndex) -> None:
        """[250,260) lies in the G1 intron and hits nothing."""
        assert index.genes_for(read("Chr1", (250, 260))) == set()

    def test_boundary_is_half_open(self, index: OverlapIndex) -> None:
        assert index.genes_for(read("Chr1", (200, 300))) == set()
        assert index.genes_for(read("Chr1", (199, 200))) == {0}
        assert index.genes_for(read("Chr1", (90, 101))) == {0}

    def test_strand_and_unknown_sequence(self, index: OverlapIndex) -> None:
        assert index.genes_for(read("ChrUn", (150, 180))) == set()
        assert index.genes_for(read("Chr2", (690, 800))) == {2}

    def test_long_exon_found_from_far_block(self) -> None:
        """A block deep inside a long exon still finds it."""
        model = ExonModel(
            {
                "LONG": [("Chr1", 0, 100000)],
                "SHORT": [("Chr1", 50000, 50010)],
            }
        )
        index = OverlapIndex(model)
        assert index.genes_for(read("Chr1", (90000, 90010))) == {0}
        assert index.genes_for(read("Chr1", (50005, 50006))) == {0, 1}

    def test_block_query_returns_gene_indices(self, index: OverlapIndex) -> None:
        hits = index.genes_for_block("Chr1", 150, 1050)
        assert sorted(hits.tolist()) == [0, 0, 1]


class TestCountOverlaps:
    """Tests for count_overlaps and OverlapCounter."""

    def test_union_counts_once_per_gene(self, index: OverlapIndex) -> None:
        """A spliced read touching both G1 exons counts once."""
        counts = count_overlaps(index, [read("Chr1", (180, 200), (300, 320))])
        assert counts.tolist() == [1, 0, 0]

    def test_gap_blocks_do_not_count(self, index: OverlapIndex) -> None:
        """Only aligned blocks overlap; the skipped region spans G1 exon 2."""
        counts = count_overlaps(index, [read("Chr1", (250, 260), (450, 470))])
        assert counts.tolist() == [0, 0, 0]

    def test_multi_gene_read_counts_for_each(self, overlapping_model: ExonModel) -> None:
        index = OverlapIndex(overlapping_model)
        counts = count_overlaps(index, [read("Chr1", (260, 280)), read("Chr1", (400, 450))])
        assert counts.tolist() == [1, 2]

    def test_sum_bounded_by_reads_times_genes(self, index: OverlapIndex) -> None:
        reads = [read("Chr1", (150, 180)), read("Chr1", (190, 1050)), read("Chr2", (0, 10))]
        counts = count_overlaps(index, reads)
        assert counts.sum() <= len(reads) * index.n_genes
        assert counts.tolist() == [2, 1, 0]

    def test_model_order_and_dtype(self, index: OverlapIndex) -> None:
        counts = count_overlaps(index, [])
        assert counts.dtype == np.int64
        assert len(counts) == 3
        assert index.gene_ids == ["G1", "G2", "G3"]

    def test_min_mapq(self, index: OverlapIndex) -> None:
        reads = [read("Chr1", (150, 180), mapq=5), read("Chr1", (150, 180), mapq=40)]
        assert count_overlaps(index, reads, min_mapq=30).tolist() == [1, 0, 0]

    def test_counter_bookkeeping(self, index: OverlapIndex) -> None:
        counter = OverlapCounter(index)
        counter.add(read("Chr1", (150, 180)))
        counter.add(read("Chr1", (250, 260)))
        assert counter.n_reads == 2
        assert counter.n_assigned == 1
