"""Tests for exontally.io.bam module.

Uses small BAM files written with pysam, plus mocks where a real file
would be awkward to build.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pysam
import pytest

from exontally.io.bam import (
    BLOCK_OPS,
    AlignedRead,
    AlignmentReader,
    cigar_blocks,
    to_aligned_read,
)
from exontally.utils.intervals import Interval

CIGAR_M = pysam.CMATCH
CIGAR_I = pysam.CINS
CIGAR_D = pysam.CDEL
CIGAR_N = pysam.CREF_SKIP
CIGAR_S = pysam.CSOFT_CLIP

# SAM flags
FLAG_UNMAPPED = 0x4
FLAG_SECONDARY = 0x100
FLAG_SUPPLEMENTARY = 0x800


class TestBlockOps:
    """Tests for the block-forming CIGAR operations."""

    def test_skips_and_clips_are_not_block_ops(self) -> None:
        assert CIGAR_M in BLOCK_OPS
        assert CIGAR_D in BLOCK_OPS
        assert CIGAR_N not in BLOCK_OPS
        assert CIGAR_I not in BLOCK_OPS
        assert CIGAR_S not in BLOCK_OPS


class TestCigarBlocks:
    """Tests for cigar_blocks."""

    def test_contiguous(self) -> None:
        blocks, n_gaps = cigar_blocks(150, [(CIGAR_M, 30)])
        assert blocks == (Interval(150, 180),)
        assert n_gaps == 0

    def test_split_at_skipped_region(self) -> None:
        blocks, n_gaps = cigar_blocks(180, [(CIGAR_M, 20), (CIGAR_N, 100), (CIGAR_M, 20)])
        assert blocks == (Interval(180, 200), Interval(300, 320))
        assert n_gaps == 1

    def test_deletion_stays_in_block(self) -> None:
        """Deletions consume reference but do not split."""
        blocks, n_gaps = cigar_blocks(0, [(CIGAR_M, 10), (CIGAR_D, 5), (CIGAR_M, 10)])
        assert blocks == (Interval(0, 25),)
        assert n_gaps == 0

    def test_clips_and_insertions_ignored(self) -> None:
        cigar = [(CIGAR_S, 5), (CIGAR_M, 10), (CIGAR_I, 3), (CIGAR_M, 10), (CIGAR_S, 2)]
        blocks, _ = cigar_blocks(100, cigar)
        assert blocks == (Interval(100, 120),)

    def test_two_gaps(self) -> None:
        cigar = [(CIGAR_M, 10), (CIGAR_N, 50), (CIGAR_M, 10), (CIGAR_N, 50), (CIGAR_M, 10)]
        blocks, n_gaps = cigar_blocks(0, cigar)
        assert blocks == (Interval(0, 10), Interval(60, 70), Interval(120, 130))
        assert n_gaps == 2

    def test_no_aligned_bases(self) -> None:
        blocks, _ = cigar_blocks(0, [(CIGAR_S, 10)])
        assert blocks == ()


class TestAlignedRead:
    """Tests for AlignedRead."""

    def test_width_includes_gaps(self) -> None:
        r = AlignedRead("Chr1", (Interval(180, 200), Interval(300, 320)), 60, 1)
        assert r.start == 180
        assert r.end == 320
        assert r.width == 140

    def test_defaults(self) -> None:
        r = AlignedRead("Chr1", (Interval(0, 10),), 60, 0)
        assert r.quality_tag is None
        assert r.n_hits is None


class TestToAlignedRead:
    """Tests for conversion from pysam segments."""

    def _segment(self, tags: dict) -> MagicMock:
        segment = MagicMock()
        segment.reference_start = 100
        segment.reference_name = "Chr1"
        segment.mapping_quality = 42
        segment.cigartuples = [(CIGAR_M, 50)]
        segment.has_tag.side_effect = lambda tag: tag in tags
        segment.get_tag.side_effect = lambda tag: tags[tag]
        return segment

    def test_tags(self) -> None:
        r = to_aligned_read(self._segment({"AS": -4, "NH": 2}), quality_tag="AS")
        assert r == AlignedRead("Chr1", (Interval(100, 150),), 42, 0, -4, 2)

    def test_missing_tag(self) -> None:
        r = to_aligned_read(self._segment({}), quality_tag="AS")
        assert r.quality_tag is None
        assert r.n_hits is None

    def test_no_blocks(self) -> None:
        segment = self._segment({})
        segment.cigartuples = None
        assert to_aligned_read(segment) is None


class TestAlignmentReaderInit:
    """Tests for AlignmentReader initialization."""

    def test_init_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            AlignmentReader(tmp_path / "missing.bam")

    def test_malformed_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.bam"
        path.write_bytes(b"not a bam\n")
        with pytest.raises((ValueError, OSError)):
            with AlignmentReader(path) as reader:
                list(reader)

    @patch("exontally.io.bam.pysam.AlignmentFile")
    def test_context_manager(self, mock_alignment_file: MagicMock, tmp_path: Path) -> None:
        path = tmp_path / "test.bam"
        path.touch()
        mock_bam = MagicMock()
        mock_alignment_file.return_value = mock_bam

        with AlignmentReader(path) as reader:
            assert reader.path == path
        mock_bam.close.assert_called_once()
        mock_alignment_file.assert_called_once_with(str(path), "rb")

    @patch("exontally.io.bam.pysam.AlignmentFile")
    def test_sam_mode(self, mock_alignment_file: MagicMock, tmp_path: Path) -> None:
        path = tmp_path / "test.sam"
        path.touch()
        AlignmentReader(path).close()
        mock_alignment_file.assert_called_once_with(str(path), "r")


class TestAlignmentReaderIteration:
    """Tests reading synthetic BAM files."""

    def test_reads_and_blocks(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [
                read_spec(150, [(CIGAR_M, 30)], tags={"AS": -2}),
                read_spec(180, [(CIGAR_M, 20), (CIGAR_N, 100), (CIGAR_M, 20)], mapq=7),
            ],
        )
        with AlignmentReader(path) as reader:
            reads = list(reader)

        assert [r.blocks for r in reads] == [
            (Interval(150, 180),),
            (Interval(180, 200), Interval(300, 320)),
        ]
        assert [r.mapping_quality for r in reads] == [60, 7]
        assert [r.n_gaps for r in reads] == [0, 1]
        assert reads[0].quality_tag == -2

    def test_unmapped_skipped(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [
                read_spec(150, [(CIGAR_M, 30)]),
                read_spec(160, [(CIGAR_M, 30)], flag=0x4),
            ],
        )
        with AlignmentReader(path) as reader:
            assert len(list(reader)) == 1

    def test_primary_only(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [
                read_spec(150, [(CIGAR_M, 30)]),
                read_spec(160, [(CIGAR_M, 30)], flag=FLAG_SECONDARY),
                read_spec(170, [(CIGAR_M, 30)], flag=FLAG_SUPPLEMENTARY),
            ],
        )
        with AlignmentReader(path) as reader:
            assert len(list(reader)) == 3
        with AlignmentReader(path, primary_only=True) as reader:
            assert len(list(reader)) == 1

    def test_custom_quality_tag(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [read_spec(150, [(CIGAR_M, 30)], tags={"AS": 10, "XS": 3})],
        )
        with AlignmentReader(path, quality_tag="XS") as reader:
            assert [r.quality_tag for r in reader] == [3]

    def test_used_names_without_index(self, tmp_path: Path, bam_writer, read_spec) -> None:
        """Without an index the reads are scanned; header-only contigs are left out."""
        path = bam_writer(
            tmp_path / "s.bam",
            [read_spec(150, [(CIGAR_M, 30)]), read_spec(40, [(CIGAR_M, 30)], seqid="Chr2")],
            references=(("Chr1", 10000), ("Chr2", 10000), ("ChrM", 500)),
        )
        with AlignmentReader(path) as reader:
            assert reader.used_sequence_names() == {"Chr1", "Chr2"}
            assert reader.references == ["Chr1", "Chr2", "ChrM"]
            # the scan does not consume the reader's own stream
            assert len(list(reader)) == 2

    def test_unmapped_reads_do_not_mark_names_used(
        self, tmp_path: Path, bam_writer, read_spec
    ) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [
                read_spec(150, [(CIGAR_M, 30)]),
                read_spec(60, [(CIGAR_M, 30)], seqid="Chr2", flag=FLAG_UNMAPPED),
            ],
        )
        with AlignmentReader(path) as reader:
            assert reader.used_sequence_names() == {"Chr1"}

    def test_used_names_from_index(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(
            tmp_path / "s.bam",
            [read_spec(150, [(CIGAR_M, 30)])],
            index=True,
        )
        with AlignmentReader(path) as reader:
            assert reader.used_sequence_names() == {"Chr1"}

    def test_closed_reader(self, tmp_path: Path, bam_writer, read_spec) -> None:
        path = bam_writer(tmp_path / "s.bam", [read_spec(150, [(CIGAR_M, 30)])])
        reader = AlignmentReader(path)
        reader.close()
        with pytest.raises(RuntimeError):
            reader.references
