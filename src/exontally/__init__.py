"""exontally: exon-level read counting and alignment QC for RNA-seq.

exontally counts, per gene, the reads of each sample that overlap the
gene's exons and tabulates alignment quality statistics alongside the
counts.

Example:
    >>> import exontally
    >>> exontally.__version__
    '0.1.0'

Modules:
    core: Harmonization, intron profiling, counting, statistics, aggregation
    io: BAM, annotation and delimited table handling
    parallel: Worker pool execution
    utils: Interval helpers and logging
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
