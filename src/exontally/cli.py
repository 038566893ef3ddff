"""Command-line interface for exontally.

This module provides the main entry point for the exontally CLI tool.
It uses Click to define commands and rich for console output.

Commands:
    count: Count reads per gene and collect alignment QC for every sample
    cutpoints: Show the alignment-width cut-points derived from an annotation

Example:
    $ exontally --help
    $ exontally count bams/ -a genes.gtf -o results/ --read-length 100 \\
        --rename 1=Chr1 --groups groups.tsv -j 8
    $ exontally cutpoints -a genes.gtf --read-length 100
"""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from exontally import __version__

# Initialize rich console for pretty output
console = Console()

DELIMITERS = {"tab": "\t", "comma": ","}


@click.group()
@click.version_option(version=__version__, prog_name="exontally")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output.")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Also write DEBUG-level logs to this file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, log_file: Optional[Path]) -> None:
    """exontally: exon-level read counting and alignment QC for RNA-seq.

    Counts the reads of every sample that overlap each gene's exons and
    tabulates gap counts, mapping quality, alignment width and a secondary
    quality tag per sample.
    """
    from exontally.utils.logging import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    verbosity = 0 if quiet else (2 if verbose else 1)
    setup_logging(verbosity=verbosity, log_file=log_file)


def _load_rename_table(rename_table: Optional[Path], rename: tuple[str, ...]) -> dict[str, str]:
    from exontally.io.tables import parse_rename_pairs, read_rename_table

    table: dict[str, str] = {}
    if rename_table is not None:
        table.update(read_rename_table(rename_table))
    table.update(parse_rename_pairs(rename))
    return table


def _print_report(report) -> None:
    table = Table(title="Samples", show_lines=False)
    table.add_column("Sample")
    table.add_column("Status")
    table.add_column("Reads", justify="right")
    table.add_column("Assigned", justify="right")
    table.add_column("Reason")

    for status in report.statuses:
        style = "green" if status.succeeded else "red"
        label = status.status + (" (cached)" if status.cached else "")
        table.add_row(
            status.sample_id,
            f"[{style}]{label}[/{style}]",
            "" if status.n_reads is None else f"{status.n_reads:,}",
            "" if status.n_assigned is None else f"{status.n_assigned:,}",
            escape(status.reason or ""),
        )
    console.print(table)


# =============================================================================
# count command
# =============================================================================


@main.command()
@click.argument("bam_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "-a",
    "--annotation",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Gene annotation (GTF or GFF3, optionally gzipped).",
)
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory for the count matrix, statistic tables and run report.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TOML configuration file. Command-line options take precedence.",
)
@click.option("--read-length", type=int, default=None, help="Read length used as a width cut-point. [default: 100]")
@click.option(
    "--rename-table",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Two-column table mapping annotation sequence names to alignment names.",
)
@click.option(
    "--rename",
    type=str,
    multiple=True,
    help="Sequence rename OLD=NEW (annotation name = alignment name). Repeatable.",
)
@click.option(
    "--groups",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Two-column table mapping sample ids to treatment groups.",
)
@click.option("--pattern", type=str, default=None, help="Glob selecting alignment files. [default: *.bam]")
@click.option(
    "--separator",
    type=str,
    default=None,
    help="Regex splitting file names; the first token is the sample id. [default: [._]]",
)
@click.option("--quality-tag", type=str, default=None, help="BAM tag tabulated as secondary quality. [default: AS]")
@click.option(
    "--primary-only/--all-alignments",
    default=None,
    help="Skip secondary and supplementary alignments. [default: all alignments]",
)
@click.option("--min-mapq", type=int, default=None, help="Minimum mapping quality for counting. [default: 0]")
@click.option("--good-mapq", type=int, default=None, help="Threshold for the good-alignments table. [default: 30]")
@click.option("--feature", type=str, default="exon", show_default=True, help="Annotation feature type counted as exons.")
@click.option(
    "--gene-attribute",
    type=str,
    default=None,
    help="Attribute naming an exon's gene (GTF default: gene_id; GFF3 follows Parent).",
)
@click.option("-j", "--workers", type=int, default=None, help="Number of parallel workers. [default: CPU count]")
@click.option(
    "--backend",
    type=click.Choice(["processes", "threads", "serial"]),
    default=None,
    help="Parallel backend. [default: processes]",
)
@click.option("--timeout", type=float, default=None, help="Per-sample timeout in seconds.")
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache per-sample results here and reuse them on reruns.",
)
@click.option(
    "--delimiter",
    type=click.Choice(sorted(DELIMITERS)),
    default=None,
    help="Output column delimiter. [default: tab]",
)
@click.pass_context
def count(
    ctx: click.Context,
    bam_dir: Path,
    annotation: Path,
    output_dir: Path,
    config_path: Optional[Path],
    read_length: Optional[int],
    rename_table: Optional[Path],
    rename: tuple[str, ...],
    groups: Optional[Path],
    pattern: Optional[str],
    separator: Optional[str],
    quality_tag: Optional[str],
    primary_only: Optional[bool],
    min_mapq: Optional[int],
    good_mapq: Optional[int],
    feature: str,
    gene_attribute: Optional[str],
    workers: Optional[int],
    backend: Optional[str],
    timeout: Optional[float],
    cache_dir: Optional[Path],
    delimiter: Optional[str],
) -> None:
    """Count reads per gene and collect alignment QC for every sample.

    Every alignment file in BAM_DIR is one sample; its id is the first
    token of the file name. Samples are processed in parallel. A sample
    that fails is reported and the run continues with the others.

    \b
    Outputs (in OUTPUT_DIR):
    - counts.tsv: gene x sample read counts
    - stats_<metric>.tsv: value, frequency, sample, metric
    - good_alignments.tsv: mapping quality >= 30 with sample groups
    - cut_points.tsv: alignment-width bins
    - run_report.tsv: status of every sample

    \b
    Examples:
        $ exontally count bams/ -a genes.gtf -o results/ --read-length 150
        $ exontally count bams/ -a genes.gff3 -o results/ \\
            --rename-table chrom_names.tsv --groups groups.tsv -j 8 --timeout 7200
    """
    from exontally.config import Config
    from exontally.core.pipeline import run_pipeline
    from exontally.errors import ExontallyError
    from exontally.io.annotation import load_exon_model
    from exontally.io.tables import read_group_table

    verbose = ctx.obj.get("verbose", False)
    quiet = ctx.obj.get("quiet", False)

    try:
        config = Config.load(config_path)

        overrides = (
            (config.counting, "read_length", read_length),
            (config.counting, "sample_pattern", pattern),
            (config.counting, "sample_separator", separator),
            (config.counting, "quality_tag", quality_tag),
            (config.counting, "primary_only", primary_only),
            (config.counting, "min_mapq", min_mapq),
            (config.counting, "good_mapq", good_mapq),
            (config.parallel, "max_workers", workers),
            (config.parallel, "backend", backend),
            (config.parallel, "timeout", timeout),
            (config.output, "cache_dir", cache_dir),
            (config.output, "delimiter", DELIMITERS[delimiter] if delimiter else None),
        )
        for section, name, value in overrides:
            if value is not None:
                setattr(section, name, value)
        config.validate()

        names = _load_rename_table(rename_table, rename)
        group_map = read_group_table(groups) if groups is not None else {}

        if not quiet:
            console.print(f"[blue]Alignments:[/blue] {bam_dir}")
            console.print(f"[blue]Annotation:[/blue] {annotation}")
            console.print(f"[blue]Output:[/blue] {output_dir}")
            if names:
                console.print(f"[blue]Renamed sequences:[/blue] {len(names)}")

        model = load_exon_model(annotation, feature=feature, gene_attribute=gene_attribute)

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
            disable=quiet,
        )
        progress_task = progress.add_task("Processing samples", total=None)

        def on_progress(completed: int, total: int, sample_id: str) -> None:
            progress.update(
                progress_task,
                completed=completed,
                total=total,
                description=f"Finished {sample_id}",
            )

        with progress:
            outcome = run_pipeline(
                bam_dir,
                model,
                output_dir,
                config=config,
                rename_table=names,
                groups=group_map,
                progress_callback=on_progress,
            )

    except (ExontallyError, OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if verbose:
            console.print_exception()
        raise SystemExit(1)

    report = outcome.report
    if not quiet:
        _print_report(report)

    if not report.ok:
        console.print(f"[red]Error:[/red] no sample was processed successfully ({report.summary()})")
        raise SystemExit(1)

    if report.partial:
        console.print(f"[yellow]Warning:[/yellow] {report.summary()}")
    elif not quiet:
        console.print(f"[green]Done:[/green] {report.summary()}")

    if not quiet:
        counts = outcome.merged.counts
        console.print(
            f"[green]Count matrix:[/green] {len(counts.gene_ids)} genes x "
            f"{len(counts.sample_ids)} samples -> {outcome.outputs['counts']}"
        )


# =============================================================================
# cutpoints command
# =============================================================================


@main.command("cutpoints")
@click.option(
    "-a",
    "--annotation",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Gene annotation (GTF or GFF3, optionally gzipped).",
)
@click.option("--read-length", type=int, default=100, show_default=True, help="Read length used as a cut-point.")
@click.option("--feature", type=str, default="exon", show_default=True, help="Annotation feature type counted as exons.")
@click.option("--gene-attribute", type=str, default=None, help="Attribute naming an exon's gene.")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the bins to this TSV file.",
)
@click.pass_context
def cutpoints(
    ctx: click.Context,
    annotation: Path,
    read_length: int,
    feature: str,
    gene_attribute: Optional[str],
    output: Optional[Path],
) -> None:
    """Show the alignment-width cut-points derived from an annotation.

    Cut-points are 0, the read length, the minimum, quartiles and maximum
    of all intron lengths, and infinity.
    """
    from exontally.core.introns import profile_cut_points
    from exontally.errors import EmptyGeneModelError
    from exontally.io.annotation import load_exon_model
    from exontally.io.tables import write_cut_points

    quiet = ctx.obj.get("quiet", False)

    try:
        model = load_exon_model(annotation, feature=feature, gene_attribute=gene_attribute)
        if model.n_genes == 0:
            raise EmptyGeneModelError(f"No genes found in {annotation}")
        cut_points = profile_cut_points(model, read_length)
    except (EmptyGeneModelError, OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if output is not None:
        write_cut_points(cut_points, output)

    if not quiet:
        table = Table(title=f"Width bins ({cut_points.n_gaps} introns)")
        table.add_column("Bin")
        for label in cut_points.labels:
            table.add_row(label)
        console.print(table)
