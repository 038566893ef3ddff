"""BAM file handling for read counting.

This module adapts pysam alignments into the small read records consumed
by the counting and statistics code.

Features:
    - Streaming iteration over every alignment (no index required)
    - Gapped alignment blocks split at skipped regions (CIGAR ``N``)
    - Secondary quality tag and multi-mapping (NH) extraction
    - Sequence names carrying mapped reads, from the index when present

Example:
    >>> from exontally.io.bam import AlignmentReader
    >>> with AlignmentReader("sample.bam") as reader:
    ...     for read in reader:
    ...         print(read.seqid, read.width, read.n_gaps)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator, NamedTuple

import pysam

from exontally.utils.intervals import Interval

logger = logging.getLogger(__name__)

# Reference-consuming operations that stay inside one aligned block;
# CREF_SKIP (N) splits blocks
BLOCK_OPS = frozenset({pysam.CMATCH, pysam.CDEL, pysam.CEQUAL, pysam.CDIFF})

# Multi-mapping count tag
NH_TAG = "NH"


# =============================================================================
# Data Structures
# =============================================================================


class AlignedRead(NamedTuple):
    """A mapped read reduced to what counting and QC need.

    Attributes:
        seqid: Reference sequence name.
        blocks: Aligned reference blocks (0-based half-open), split at
            skipped regions.
        mapping_quality: Aligner mapping quality.
        n_gaps: Number of skipped regions (CIGAR ``N`` operations).
        quality_tag: Value of the secondary quality tag, None if absent.
        n_hits: Multi-mapping count from the NH tag, None if absent.
    """

    seqid: str
    blocks: tuple[Interval, ...]
    mapping_quality: int
    n_gaps: int
    quality_tag: Any = None
    n_hits: int | None = None

    @property
    def start(self) -> int:
        """Leftmost reference position."""
        return self.blocks[0].start

    @property
    def end(self) -> int:
        """Reference end position (exclusive)."""
        return self.blocks[-1].end

    @property
    def width(self) -> int:
        """Width on the reference, gaps included."""
        return self.end - self.start


# =============================================================================
# CIGAR Parsing
# =============================================================================


def cigar_blocks(
    reference_start: int,
    cigartuples: list[tuple[int, int]],
) -> tuple[tuple[Interval, ...], int]:
    """Split an alignment into reference blocks at skipped regions.

    Deletions stay inside their block; only ``N`` operations split.

    Args:
        reference_start: 0-based leftmost reference position.
        cigartuples: pysam-style (operation, length) pairs.

    Returns:
        Tuple of (blocks, number of skipped regions).
    """
    blocks = []
    n_gaps = 0
    ref_pos = reference_start
    block_start = reference_start

    for op, length in cigartuples:
        if op in BLOCK_OPS:
            ref_pos += length
        elif op == pysam.CREF_SKIP:
            n_gaps += 1
            if ref_pos > block_start:
                blocks.append(Interval(block_start, ref_pos))
            ref_pos += length
            block_start = ref_pos

    if ref_pos > block_start:
        blocks.append(Interval(block_start, ref_pos))

    return tuple(blocks), n_gaps


def to_aligned_read(
    segment: pysam.AlignedSegment,
    quality_tag: str | None = None,
) -> AlignedRead | None:
    """Convert a pysam segment to an AlignedRead.

    Args:
        segment: Mapped pysam alignment.
        quality_tag: Auxiliary tag to record as the secondary quality.

    Returns:
        AlignedRead, or None if the segment has no aligned bases.
    """
    blocks, n_gaps = cigar_blocks(segment.reference_start, segment.cigartuples or [])
    if not blocks:
        return None

    tag_value = None
    if quality_tag and segment.has_tag(quality_tag):
        tag_value = segment.get_tag(quality_tag)

    n_hits = segment.get_tag(NH_TAG) if segment.has_tag(NH_TAG) else None

    return AlignedRead(
        seqid=segment.reference_name,
        blocks=blocks,
        mapping_quality=segment.mapping_quality,
        n_gaps=n_gaps,
        quality_tag=tag_value,
        n_hits=n_hits,
    )


# =============================================================================
# Alignment Reader
# =============================================================================


def _open_mode(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".sam":
        return "r"
    if suffix == ".cram":
        return "rc"
    return "rb"


class AlignmentReader:
    """Stream mapped reads from a BAM/SAM/CRAM file.

    Unmapped records are always skipped. Reads are yielded one at a time
    and never retained.

    Attributes:
        path: Path to the alignment file.
        quality_tag: Tag recorded as the secondary quality.
        primary_only: Skip secondary and supplementary alignments.

    Example:
        >>> with AlignmentReader("sample.bam", quality_tag="AS") as reader:
        ...     n = sum(1 for _ in reader)
    """

    def __init__(
        self,
        path: Path | str,
        quality_tag: str | None = "AS",
        primary_only: bool = False,
    ) -> None:
        """Open the alignment file.

        Args:
            path: Path to the alignment file.
            quality_tag: Tag recorded as the secondary quality.
            primary_only: Skip secondary and supplementary alignments.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If pysam cannot parse the file.
        """
        self.path = Path(path)
        self.quality_tag = quality_tag
        self.primary_only = primary_only

        if not self.path.exists():
            raise FileNotFoundError(f"Alignment file not found: {self.path}")

        self._bam: pysam.AlignmentFile | None = pysam.AlignmentFile(
            str(self.path), _open_mode(self.path)
        )
        logger.debug(f"Opened alignment file: {self.path.name}")

    def __enter__(self) -> AlignmentReader:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the alignment file."""
        if self._bam is not None:
            self._bam.close()
            self._bam = None

    def _require_open(self) -> pysam.AlignmentFile:
        if self._bam is None:
            raise RuntimeError("Alignment file not open")
        return self._bam

    @property
    def references(self) -> list[str]:
        """Reference sequence names from the header."""
        return list(self._require_open().references)

    def used_sequence_names(self) -> set[str]:
        """Sequence names carrying mapped reads.

        Uses the index statistics when an index is available. Otherwise the
        file is scanned through a separate handle, stopping early once every
        reference has been seen, so header-only contigs never count.
        """
        bam = self._require_open()
        if bam.is_bam and bam.has_index():
            return {s.contig for s in bam.get_index_statistics() if s.mapped > 0}

        n_refs = bam.nreferences
        seen: set[int] = set()
        with pysam.AlignmentFile(str(self.path), _open_mode(self.path)) as scan:
            for segment in scan.fetch(until_eof=True):
                if not segment.is_unmapped and segment.reference_id >= 0:
                    seen.add(segment.reference_id)
                    if len(seen) == n_refs:
                        break
        logger.debug(f"Scanned {self.path.name} for used sequence names (no index)")
        return {bam.get_reference_name(ref_id) for ref_id in seen}

    def __iter__(self) -> Iterator[AlignedRead]:
        return self.iter_reads()

    def iter_reads(self) -> Iterator[AlignedRead]:
        """Iterate over mapped reads in file order.

        Yields:
            AlignedRead records.
        """
        bam = self._require_open()
        for segment in bam.fetch(until_eof=True):
            if segment.is_unmapped:
                continue
            if self.primary_only and (segment.is_secondary or segment.is_supplementary):
                continue
            read = to_aligned_read(segment, self.quality_tag)
            if read is not None:
                yield read
