"""Delimited table input and output.

Writers produce tab- or comma-delimited tables (quoted only where a
value holds the delimiter) with a header row:

- count matrix: ``gene_id`` then one column per sample
- statistic tables: ``value, frequency, sample, metric``
- good alignments: statistic columns plus ``group``
- cut-points: ``bin, lower, upper``
- run report: ``sample, path, status, reason, n_reads, n_assigned``

Readers load the two-column rename (old -> new) and group (sample ->
group) tables, accepting tab or comma delimiters, ``#`` comments and an
optional header line.
"""

from __future__ import annotations

import csv
import logging
import math
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from exontally.core.aggregate import CountMatrix, GoodAlignmentRow, StatisticTable
    from exontally.core.introns import CutPoints
    from exontally.core.pipeline import SampleStatus

logger = logging.getLogger(__name__)

STATISTIC_COLUMNS = ["value", "frequency", "sample", "metric"]
GOOD_ALIGNMENT_COLUMNS = STATISTIC_COLUMNS + ["group"]
CUT_POINT_COLUMNS = ["bin", "lower", "upper"]
REPORT_COLUMNS = ["sample", "path", "status", "reason", "n_reads", "n_assigned"]

RENAME_HEADER = ("old", "new")
GROUP_HEADER = ("sample", "group")


# =============================================================================
# Writers
# =============================================================================


def _writer(handle, delimiter: str):
    return csv.writer(
        handle,
        delimiter=delimiter,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )


def _write_rows(
    path: Path | str,
    header: list[str],
    rows: Iterable[Iterable[Any]],
    delimiter: str,
) -> Path:
    path = Path(path)
    with open(path, "w", newline="") as f:
        writer = _writer(f, delimiter)
        writer.writerow(header)
        writer.writerows(rows)
    logger.debug(f"Wrote {path}")
    return path


def write_count_matrix(matrix: CountMatrix, path: Path | str, delimiter: str = "\t") -> Path:
    """Write the gene x sample count matrix.

    Args:
        matrix: Count matrix.
        path: Output path.
        delimiter: Column delimiter.

    Returns:
        The written path.
    """
    rows = (
        [gene_id, *(int(v) for v in matrix.values[i])]
        for i, gene_id in enumerate(matrix.gene_ids)
    )
    return _write_rows(path, ["gene_id", *matrix.sample_ids], rows, delimiter)


def write_statistic_table(table: StatisticTable, path: Path | str, delimiter: str = "\t") -> Path:
    """Write one long-form statistic table."""
    return _write_rows(path, STATISTIC_COLUMNS, (tuple(r) for r in table.rows), delimiter)


def write_good_alignments(
    rows: Iterable[GoodAlignmentRow],
    path: Path | str,
    delimiter: str = "\t",
) -> Path:
    """Write the good-alignments view."""
    return _write_rows(path, GOOD_ALIGNMENT_COLUMNS, (tuple(r) for r in rows), delimiter)


def _format_number(value: float) -> str:
    if math.isinf(value):
        return "Inf"
    return str(int(value)) if float(value).is_integer() else repr(value)


def write_cut_points(cut_points: CutPoints, path: Path | str, delimiter: str = "\t") -> Path:
    """Write width bins with their boundaries."""
    bounds = cut_points.boundaries
    rows = (
        [label, _format_number(lo), _format_number(hi)]
        for label, lo, hi in zip(cut_points.labels, bounds, bounds[1:])
    )
    return _write_rows(path, CUT_POINT_COLUMNS, rows, delimiter)


def write_run_report(
    statuses: Iterable[SampleStatus],
    path: Path | str,
    delimiter: str = "\t",
) -> Path:
    """Write per-sample run status."""
    rows = (
        [
            s.sample_id,
            s.path,
            s.status,
            s.reason or "",
            "" if s.n_reads is None else s.n_reads,
            "" if s.n_assigned is None else s.n_assigned,
        ]
        for s in statuses
    )
    return _write_rows(path, REPORT_COLUMNS, rows, delimiter)


# =============================================================================
# Readers
# =============================================================================


def read_two_column_table(
    path: Path | str,
    header: tuple[str, str] | None = None,
) -> dict[str, str]:
    """Read a two-column key/value table.

    Args:
        path: Table path (tab or comma delimited).
        header: Optional header names skipped when found on the first line.

    Returns:
        Mapping of first column to second column, in file order.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: On malformed lines or duplicate keys.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")

    mapping: dict[str, str] = {}
    first = True
    with open(path) as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            delimiter = "\t" if "\t" in line else ","
            parts = [p.strip() for p in line.split(delimiter)]
            if len(parts) != 2 or not all(parts):
                raise ValueError(f"{path}:{line_no}: expected two columns, got {line!r}")

            if first and header is not None and tuple(p.lower() for p in parts) == header:
                first = False
                continue
            first = False

            key, value = parts
            if key in mapping and mapping[key] != value:
                raise ValueError(f"{path}:{line_no}: duplicate entry for {key!r}")
            mapping[key] = value

    return mapping


def read_rename_table(path: Path | str) -> dict[str, str]:
    """Read a sequence-name rename table (old -> new)."""
    return read_two_column_table(path, header=RENAME_HEADER)


def read_group_table(path: Path | str) -> dict[str, str]:
    """Read a sample -> treatment group table."""
    return read_two_column_table(path, header=GROUP_HEADER)


def parse_rename_pairs(pairs: Iterable[str]) -> dict[str, str]:
    """Parse ``OLD=NEW`` strings into a rename table.

    Raises:
        ValueError: On malformed pairs.
    """
    table = {}
    for pair in pairs:
        old, sep, new = pair.partition("=")
        if not sep or not old.strip() or not new.strip():
            raise ValueError(f"Rename must look like OLD=NEW, got {pair!r}")
        table[old.strip()] = new.strip()
    return table
