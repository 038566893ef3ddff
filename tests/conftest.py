"""Pytest configuration and shared fixtures for exontally tests.

This module contains fixtures that are shared across multiple test modules.
Fixtures are organized by category:

- Model fixtures: Small exon-by-gene models built in memory
- Annotation fixtures: GFF3/GTF files written to tmp_path
- Alignment fixtures: Synthetic BAM files written with pysam
"""

from pathlib import Path
from typing import Sequence

import pysam
import pytest

from exontally.core.models import ExonModel
from exontally.utils.intervals import GenomicInterval

# CIGAR operations that consume query bases
QUERY_OPS = {0, 1, 4, 7, 8}


# =============================================================================
# Helpers
# =============================================================================


def make_read_spec(
    start: int,
    cigar: Sequence[tuple[int, int]],
    seqid: str = "Chr1",
    mapq: int = 60,
    tags: dict | None = None,
    flag: int = 0,
) -> dict:
    """Describe one alignment for ``write_bam``."""
    return {
        "seqid": seqid,
        "start": start,
        "cigar": list(cigar),
        "mapq": mapq,
        "tags": tags if tags is not None else {"AS": 0},
        "flag": flag,
    }


def write_bam(
    path: Path,
    reads: Sequence[dict],
    references: Sequence[tuple[str, int]] = (("Chr1", 10000), ("Chr2", 10000)),
    index: bool = False,
) -> Path:
    """Write a coordinate-sorted BAM from read specs."""
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in references],
    }
    ref_ids = {name: i for i, (name, _) in enumerate(references)}
    ordered = sorted(reads, key=lambda r: (ref_ids[r["seqid"]], r["start"]))

    with pysam.AlignmentFile(str(path), "wb", header=header) as out:
        for i, spec in enumerate(ordered):
            segment = pysam.AlignedSegment(out.header)
            query_length = sum(length for op, length in spec["cigar"] if op in QUERY_OPS)
            segment.query_name = f"read{i:04d}"
            segment.query_sequence = "A" * query_length
            segment.query_qualities = pysam.qualitystring_to_array("I" * query_length)
            segment.flag = spec["flag"]
            segment.reference_id = ref_ids[spec["seqid"]]
            segment.reference_start = spec["start"]
            segment.mapping_quality = spec["mapq"]
            segment.cigartuples = spec["cigar"]
            for tag, value in spec["tags"].items():
                segment.set_tag(tag, value)
            out.write(segment)

    if index:
        pysam.index(str(path))
    return path


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def simple_model() -> ExonModel:
    """Two genes on Chr1 and one on Chr2.

    - G1: exons [100,200) and [300,400) on Chr1 (intron 100 bp)
    - G2: exons [1000,1100), [1300,1400) and [1800,1900) on Chr1
      (introns 200 and 400 bp)
    - G3: single exon [500,700) on Chr2
    """
    return ExonModel(
        {
            "G1": [GenomicInterval("Chr1", 100, 200), GenomicInterval("Chr1", 300, 400)],
            "G2": [
                GenomicInterval("Chr1", 1000, 1100),
                GenomicInterval("Chr1", 1300, 1400),
                GenomicInterval("Chr1", 1800, 1900),
            ],
            "G3": [GenomicInterval("Chr2", 500, 700)],
        }
    )


@pytest.fixture
def overlapping_model() -> ExonModel:
    """Two genes whose exons overlap on Chr1 (antisense pair)."""
    return ExonModel(
        {
            "GA": [GenomicInterval("Chr1", 100, 300, "+")],
            "GB": [GenomicInterval("Chr1", 250, 500, "-")],
        }
    )


# =============================================================================
# Annotation Fixtures
# =============================================================================


@pytest.fixture
def gff3_file(tmp_path: Path) -> Path:
    """GFF3 with gene -> mRNA -> exon chains matching ``simple_model``."""
    lines = [
        "##gff-version 3",
        "##sequence-region Chr1 1 10000",
        "##sequence-region Chr2 1 10000",
        "##sequence-region ChrM 1 16000",
        "Chr1\ttest\tgene\t101\t400\t.\t+\t.\tID=G1",
        "Chr1\ttest\tmRNA\t101\t400\t.\t+\t.\tID=G1.t1;Parent=G1",
        "Chr1\ttest\texon\t101\t200\t.\t+\t.\tID=G1.t1.e1;Parent=G1.t1",
        "Chr1\ttest\texon\t301\t400\t.\t+\t.\tID=G1.t1.e2;Parent=G1.t1",
        "Chr1\ttest\tgene\t1001\t1900\t.\t-\t.\tID=G2",
        "Chr1\ttest\tmRNA\t1001\t1900\t.\t-\t.\tID=G2.t1;Parent=G2",
        "Chr1\ttest\texon\t1001\t1100\t.\t-\t.\tParent=G2.t1",
        "Chr1\ttest\texon\t1301\t1400\t.\t-\t.\tParent=G2.t1",
        "Chr1\ttest\texon\t1801\t1900\t.\t-\t.\tParent=G2.t1",
        "Chr1\ttest\tmRNA\t1001\t1900\t.\t-\t.\tID=G2.t2;Parent=G2",
        "Chr1\ttest\texon\t1001\t1100\t.\t-\t.\tParent=G2.t2",
        "Chr1\ttest\texon\t1801\t1900\t.\t-\t.\tParent=G2.t2",
        "Chr2\ttest\tgene\t501\t700\t.\t+\t.\tID=G3",
        "Chr2\ttest\tmRNA\t501\t700\t.\t+\t.\tID=G3.t1;Parent=G3",
        "Chr2\ttest\texon\t501\t700\t.\t+\t.\tParent=G3.t1",
    ]
    path = tmp_path / "genes.gff3"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def gtf_file(tmp_path: Path) -> Path:
    """GTF using Ensembl-style numeric sequence names."""
    lines = [
        '1\ttest\texon\t101\t200\t.\t+\t.\tgene_id "G1"; transcript_id "G1.t1";',
        '1\ttest\texon\t301\t400\t.\t+\t.\tgene_id "G1"; transcript_id "G1.t1";',
        '1\ttest\tCDS\t121\t200\t.\t+\t0\tgene_id "G1"; transcript_id "G1.t1";',
        '2\ttest\texon\t501\t700\t.\t+\t.\tgene_id "G3"; transcript_id "G3.t1";',
    ]
    path = tmp_path / "genes.gtf"
    path.write_text("\n".join(lines) + "\n")
    return path


# =============================================================================
# Alignment Fixtures
# =============================================================================


@pytest.fixture
def sample_reads() -> list[dict]:
    """Reads exercising the ``simple_model`` genes.

    - [150,180) inside G1 exon 1
    - [250,260) inside the G1 intron (no gene)
    - spliced read [180,200) N100 [300,320) touching both G1 exons
    - spliced read [1050,1100) N200 [1300,1350) in G2, low mapq
    - [600,650) on Chr2 in G3, no AS tag
    """
    return [
        make_read_spec(150, [(0, 30)], mapq=60, tags={"AS": -2, "NH": 1}),
        make_read_spec(250, [(0, 10)], mapq=60, tags={"AS": 0}),
        make_read_spec(180, [(0, 20), (3, 100), (0, 20)], mapq=60, tags={"AS": 0}),
        make_read_spec(1050, [(0, 50), (3, 200), (0, 50)], mapq=10, tags={"AS": -5}),
        make_read_spec(600, [(0, 50)], seqid="Chr2", mapq=255, tags={}),
    ]


@pytest.fixture
def bam_dir(tmp_path: Path, sample_reads: list[dict]) -> Path:
    """Directory with three samples: two valid BAMs and one malformed file."""
    directory = tmp_path / "bams"
    directory.mkdir()
    write_bam(directory / "S1_L001.sorted.bam", sample_reads)
    write_bam(directory / "S2.bam", sample_reads[:2])
    (directory / "S3.bam").write_bytes(b"this is not a bam file\n")
    return directory


@pytest.fixture
def valid_bam_dir(tmp_path: Path, sample_reads: list[dict]) -> Path:
    """Directory with two valid BAMs."""
    directory = tmp_path / "valid_bams"
    directory.mkdir()
    write_bam(directory / "S1.bam", sample_reads)
    write_bam(directory / "S2.bam", sample_reads[:2])
    return directory


@pytest.fixture
def bam_writer():
    """The ``write_bam`` helper, for tests building their own BAMs."""
    return write_bam


@pytest.fixture
def read_spec():
    """The ``make_read_spec`` helper."""
    return make_read_spec
