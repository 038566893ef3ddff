"""Input/output handlers for exontally.

- bam: Streaming alignment reader (pysam)
- annotation: GFF3/GTF exon-by-gene loading
- tables: Delimited count matrix, statistic, rename and group tables
"""

from exontally.io.annotation import load_exon_model
from exontally.io.bam import AlignedRead, AlignmentReader

__all__ = [
    "AlignedRead",
    "AlignmentReader",
    "load_exon_model",
]
