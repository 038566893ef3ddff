"""Core counting logic for exontally.

- models: Exon-by-gene model container
- harmonize: Sequence-name harmonization
- introns: Intron profiling and width cut-points
- counting: Read-to-gene overlap counting
- stats: Alignment statistics
- worker: Per-sample processing
- aggregate: Cross-sample merging
- pipeline: End-to-end orchestration
"""

from exontally.core.harmonize import harmonize, invert_rename_table
from exontally.core.introns import CutPoints, compute_cut_points
from exontally.core.models import ExonModel

__all__ = [
    "CutPoints",
    "ExonModel",
    "compute_cut_points",
    "harmonize",
    "invert_rename_table",
]
