"""End-to-end counting pipeline.

Steps, each finishing before the next starts:

1. Discover samples and check their ids are unique
2. Harmonize annotation sequence names to the alignments
3. Profile introns per gene (parallel) and fix the width cut-points
4. Process every sample (parallel, one task per sample, with timeout)
5. Aggregate succeeded samples and write the output tables

Fatal errors (empty gene model, duplicate sample ids, naming mismatch)
abort before any output is written. A failing sample is recorded in the
run report and the run continues with the others.

Example:
    >>> from exontally.core.pipeline import run_pipeline
    >>> outcome = run_pipeline("bams/", model, "out/", config=config)
    >>> outcome.report.failed_ids
    ['S3']
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Callable

import attrs

from exontally.config import Config
from exontally.core.aggregate import (
    AggregateResult,
    SampleInput,
    aggregate,
    discover_samples,
)
from exontally.core.counting import OverlapIndex
from exontally.core.harmonize import harmonize
from exontally.core.introns import CutPoints, profile_cut_points
from exontally.core.models import ExonModel
from exontally.core.worker import ReaderOptions, SampleResult, SampleTask, process_sample
from exontally.errors import EmptyGeneModelError, ExontallyError
from exontally.io.bam import AlignmentReader
from exontally.io.tables import (
    write_count_matrix,
    write_cut_points,
    write_good_alignments,
    write_run_report,
    write_statistic_table,
)
from exontally.parallel.executor import ParallelExecutor, get_optimal_workers
from exontally.utils.logging import Timer

logger = logging.getLogger(__name__)

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


# =============================================================================
# Run Report
# =============================================================================


@attrs.define
class SampleStatus:
    """Outcome for one discovered sample."""

    sample_id: str
    path: str
    status: str
    reason: str | None = None
    n_reads: int | None = None
    n_assigned: int | None = None
    cached: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED


@attrs.define
class RunReport:
    """Status of every discovered sample, in discovery order."""

    statuses: list[SampleStatus] = attrs.Factory(list)

    @property
    def succeeded_ids(self) -> list[str]:
        return [s.sample_id for s in self.statuses if s.succeeded]

    @property
    def failed(self) -> list[SampleStatus]:
        return [s for s in self.statuses if not s.succeeded]

    @property
    def failed_ids(self) -> list[str]:
        return [s.sample_id for s in self.failed]

    @property
    def ok(self) -> bool:
        """True when at least one sample succeeded."""
        return bool(self.succeeded_ids)

    @property
    def partial(self) -> bool:
        """True when some, but not all, samples failed."""
        return self.ok and bool(self.failed)

    def summary(self) -> str:
        """One-line summary of the run."""
        return (
            f"{len(self.succeeded_ids)}/{len(self.statuses)} samples succeeded"
            + (f"; failed: {', '.join(self.failed_ids)}" if self.failed else "")
        )


@attrs.define
class RunOutcome:
    """Everything a run produced."""

    report: RunReport
    cut_points: CutPoints
    merged: AggregateResult | None = None
    outputs: dict[str, Path] = attrs.Factory(dict)


# =============================================================================
# Result Cache
# =============================================================================


class ResultCache:
    """Per-sample result cache keyed by inputs and run state.

    A key covers the sample id, the alignment file's size and mtime, the
    gene model and cut-point fingerprints, and the reader options, so any
    change to these recomputes the sample.
    """

    def __init__(self, cache_dir: Path | str, model_fingerprint: str, cut_points: CutPoints) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.model_fingerprint = model_fingerprint
        self.cut_fingerprint = cut_points.fingerprint()

    def key(self, sample: SampleInput, options: ReaderOptions) -> str:
        stat = sample.path.stat()
        parts = [
            sample.sample_id,
            str(sample.path.resolve()),
            str(stat.st_size),
            str(stat.st_mtime_ns),
            self.model_fingerprint,
            self.cut_fingerprint,
            json.dumps(attrs.asdict(options), sort_keys=True),
        ]
        return hashlib.sha256("\0".join(parts).encode()).hexdigest()

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def load(self, sample: SampleInput, options: ReaderOptions) -> SampleResult | None:
        """Cached result for a sample, or None."""
        path = self._path(self.key(sample, options))
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return SampleResult.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path.name}: {e}")
            return None

    def store(self, sample: SampleInput, options: ReaderOptions, result: SampleResult) -> None:
        """Cache a sample's result.

        A failed write only loses the cache entry; the result itself is
        still used by the run.
        """
        path = self._path(self.key(sample, options))
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(result.to_dict(), f)
            tmp.replace(path)
        except OSError as e:
            logger.warning(f"{sample.sample_id}: could not write cache entry {path.name}: {e}")
            tmp.unlink(missing_ok=True)


# =============================================================================
# Pipeline Steps
# =============================================================================


def collect_alignment_names(samples: Sequence[SampleInput]) -> set[str]:
    """Union of sequence names carrying reads across all samples.

    Files that cannot be opened are skipped here; their worker reports the
    failure.
    """
    names: set[str] = set()
    for sample in samples:
        try:
            with AlignmentReader(sample.path, quality_tag=None) as reader:
                names |= reader.used_sequence_names()
        except (OSError, ValueError) as e:
            logger.warning(f"{sample.sample_id}: cannot read header of {sample.path.name}: {e}")
    return names


def _make_executor(
    config: Config,
    timeout: float | None = None,
    progress_callback: Callable[[int, int, str], None] | None = None,
) -> ParallelExecutor:
    n_workers = config.parallel.max_workers or get_optimal_workers()
    return ParallelExecutor(
        n_workers=n_workers,
        backend=config.parallel.backend,
        timeout=timeout,
        progress_callback=progress_callback,
    )


def process_samples(
    samples: Sequence[SampleInput],
    index: OverlapIndex,
    cut_points: CutPoints,
    config: Config,
    cache: ResultCache | None = None,
    progress_callback: Callable[[int, int, str], None] | None = None,
) -> tuple[list[SampleResult], RunReport]:
    """Run the per-sample worker on every sample.

    Returns:
        Tuple of (results of succeeded samples, report covering all samples).
    """
    options = ReaderOptions(
        quality_tag=config.counting.quality_tag,
        primary_only=config.counting.primary_only,
        min_mapq=config.counting.min_mapq,
    )

    results: dict[str, SampleResult] = {}
    statuses: dict[str, SampleStatus] = {}
    todo: list[SampleInput] = []
    for sample in samples:
        cached = cache.load(sample, options) if cache is not None else None
        if cached is not None:
            logger.info(f"{sample.sample_id}: using cached result")
            results[sample.sample_id] = cached
            statuses[sample.sample_id] = SampleStatus(
                sample.sample_id,
                str(sample.path),
                STATUS_SUCCEEDED,
                n_reads=cached.n_reads,
                n_assigned=cached.n_assigned,
                cached=True,
            )
        else:
            todo.append(sample)

    executor = _make_executor(config, config.parallel.timeout, progress_callback)
    tasks = [SampleTask(s.sample_id, s.path, index, cut_points, options) for s in todo]
    task_results, stats = executor.map_items(process_sample, tasks, [s.sample_id for s in todo])

    for sample, task_result in zip(todo, task_results):
        if task_result.success:
            result: SampleResult = task_result.result
            results[sample.sample_id] = result
            statuses[sample.sample_id] = SampleStatus(
                sample.sample_id,
                str(sample.path),
                STATUS_SUCCEEDED,
                n_reads=result.n_reads,
                n_assigned=result.n_assigned,
            )
            if cache is not None:
                cache.store(sample, options, result)
        else:
            logger.error(f"Sample {sample.sample_id} failed: {task_result.error}")
            statuses[sample.sample_id] = SampleStatus(
                sample.sample_id,
                str(sample.path),
                STATUS_FAILED,
                reason=task_result.error,
            )

    if stats.peak_memory_mb:
        logger.debug(f"Peak memory during sample processing: {stats.peak_memory_mb:.0f} MB")

    report = RunReport([statuses[s.sample_id] for s in samples])
    ordered = [results[sid] for sid in report.succeeded_ids]
    return ordered, report


def write_outputs(
    outcome: RunOutcome,
    output_dir: Path | str,
    config: Config,
) -> dict[str, Path]:
    """Write every output table of a run.

    Data tables are written only when at least one sample succeeded; the
    run report is always written.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    delimiter = config.output.delimiter
    ext = config.output.extension

    outputs = {
        "cut_points": write_cut_points(outcome.cut_points, output_dir / f"cut_points{ext}", delimiter),
        "report": write_run_report(outcome.report.statuses, output_dir / f"run_report{ext}", delimiter),
    }

    if outcome.merged is not None:
        merged = outcome.merged
        outputs["counts"] = write_count_matrix(merged.counts, output_dir / f"counts{ext}", delimiter)
        for metric, table in merged.tables.items():
            outputs[metric] = write_statistic_table(
                table, output_dir / f"stats_{metric}{ext}", delimiter
            )
        outputs["good_alignments"] = write_good_alignments(
            merged.good_alignments, output_dir / f"good_alignments{ext}", delimiter
        )

    return outputs


def run_pipeline(
    bam_dir: Path | str,
    model: ExonModel,
    output_dir: Path | str | None,
    config: Config | None = None,
    rename_table: Mapping[str, str] | None = None,
    groups: Mapping[str, str] | None = None,
    progress_callback: Callable[[int, int, str], None] | None = None,
) -> RunOutcome:
    """Count reads per gene and collect QC statistics for every sample.

    Args:
        bam_dir: Directory of alignment files.
        model: Gene model in annotation naming.
        output_dir: Directory for output tables (None = don't write).
        config: Run configuration (defaults when None).
        rename_table: Annotation -> alignment sequence names.
        groups: Sample -> treatment group, for the good-alignments view.
        progress_callback: Called with (completed, total, sample_id).

    Returns:
        RunOutcome with the report, cut-points, merged tables and outputs.

    Raises:
        EmptyGeneModelError: If the model has no genes.
        DuplicateSampleIdentityError: If two files derive one sample id.
        NamingMismatchError: If alignment names are missing from the model.
        ExontallyError: If no alignment files are found.
    """
    config = config or Config()
    config.validate()

    if model.n_genes == 0:
        raise EmptyGeneModelError("The gene model contains no genes; nothing to count against")

    samples = discover_samples(
        bam_dir,
        pattern=config.counting.sample_pattern,
        separator=config.counting.sample_separator,
    )
    if not samples:
        raise ExontallyError(
            f"No alignment files matching {config.counting.sample_pattern!r} in {bam_dir}"
        )

    with Timer("Sequence-name harmonization", logger):
        harmonized = harmonize(model, collect_alignment_names(samples), rename_table)

    with Timer("Intron profiling", logger):
        cut_points = profile_cut_points(
            harmonized,
            config.counting.read_length,
            executor=_make_executor(config),
            batch_size=config.parallel.gene_batch_size,
        )

    index = OverlapIndex(harmonized)
    cache = None
    if config.output.cache_dir is not None:
        cache = ResultCache(config.output.cache_dir, harmonized.fingerprint(), cut_points)

    with Timer(f"Processing {len(samples)} samples", logger):
        results, report = process_samples(
            samples, index, cut_points, config, cache=cache, progress_callback=progress_callback
        )

    outcome = RunOutcome(report=report, cut_points=cut_points)
    if report.ok:
        outcome.merged = aggregate(
            harmonized.gene_ids,
            results,
            [s.sample_id for s in samples],
            groups=groups,
            good_mapq=config.counting.good_mapq,
        )

    if output_dir is not None:
        outcome.outputs = write_outputs(outcome, output_dir, config)

    if not report.ok:
        logger.error(f"No sample succeeded: {report.summary()}")
    elif report.partial:
        logger.warning(report.summary())
    else:
        logger.info(report.summary())

    return outcome
