"""GFF3/GTF exon loading.

Builds an ExonModel (exons grouped by gene) from a GFF3 or GTF annotation.
The counting core only consumes the resulting model; any other source of
exon-by-gene mappings can be used instead.

Features:
    - GFF3 Parent chains (exon -> transcript -> gene)
    - GTF ``gene_id`` attributes
    - Gzip-compressed input
    - ``##sequence-region`` pragmas recorded as known sequence names

Example:
    >>> from exontally.io.annotation import load_exon_model
    >>> model = load_exon_model("genes.gtf")
    >>> model.n_genes
    20000
"""

from __future__ import annotations

import gzip
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import IO, Any, Iterator
from urllib.parse import unquote

from exontally.core.models import ExonModel
from exontally.utils.intervals import GenomicInterval

logger = logging.getLogger(__name__)

# Columns read from each nine-column feature line
COL_SEQID, COL_TYPE, COL_START, COL_END, COL_STRAND, COL_ATTRIBUTES = 0, 2, 3, 4, 6, 8

FEATURE_EXON = "exon"

GTF_SUFFIXES = {".gtf"}
GTF_ATTRIBUTE = re.compile(r'\s*([^\s]+)\s+"?([^";]*)"?')


# =============================================================================
# Attribute Parsing
# =============================================================================


def parse_gff3_attributes(attr_string: str) -> dict[str, str]:
    """Split a GFF3 column 9 (``key=value;...``) into a dict.

    Values are percent-decoded; items without ``=`` are ignored.
    """
    pairs = (item.strip().partition("=") for item in attr_string.split(";"))
    return {key: unquote(value) for key, sep, value in pairs if sep and key}


def parse_gtf_attributes(attr_string: str) -> dict[str, str]:
    """Parse GTF attribute string (``key "value";``) into dictionary."""
    attributes = {}
    for item in attr_string.split(";"):
        match = GTF_ATTRIBUTE.match(item)
        if match:
            attributes.setdefault(match.group(1), match.group(2))
    return attributes


# =============================================================================
# Loader
# =============================================================================


def _open_text(path: Path) -> IO[str]:
    if path.suffix == ".gz":
        return gzip.open(path, "rt")
    return open(path)


def _is_gtf(path: Path) -> bool:
    suffixes = [s.lower() for s in path.suffixes if s.lower() != ".gz"]
    return bool(suffixes) and suffixes[-1] in GTF_SUFFIXES


class AnnotationLoader:
    """Group annotated exons by gene.

    Attributes:
        path: Path to the GFF3/GTF file.
        is_gtf: Whether the file is parsed as GTF.
        feature: Feature type collected as exons.
        gene_attribute: Attribute naming the gene of an exon. Defaults to
            ``gene_id`` for GTF; GFF3 resolves Parent chains unless set.
    """

    def __init__(
        self,
        path: Path | str,
        feature: str = FEATURE_EXON,
        gene_attribute: str | None = None,
    ) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Annotation file not found: {self.path}")
        self.is_gtf = _is_gtf(self.path)
        self.feature = feature
        self.gene_attribute = gene_attribute or ("gene_id" if self.is_gtf else None)

        self.sequence_regions: set[str] = set()
        self.skipped_lines = 0

    def _iter_features(self) -> Iterator[dict[str, Any]]:
        """Yield parsed feature lines, recording sequence-region pragmas."""
        parse_attrs = parse_gtf_attributes if self.is_gtf else parse_gff3_attributes

        with _open_text(self.path) as f:
            for line in f:
                if line.startswith("##sequence-region"):
                    parts = line.split()
                    if len(parts) >= 2:
                        self.sequence_regions.add(parts[1])
                    continue
                if line.startswith("##FASTA"):
                    break
                line = line.rstrip("\n")
                if not line.strip() or line.startswith("#"):
                    continue

                parts = line.split("\t")
                if len(parts) < 9:
                    self.skipped_lines += 1
                    logger.warning(f"Malformed annotation line (expected 9 columns): {line[:50]}...")
                    continue

                try:
                    start = int(parts[COL_START]) - 1  # 1-based to 0-based
                    end = int(parts[COL_END])
                except ValueError:
                    self.skipped_lines += 1
                    logger.warning(f"Non-integer coordinates in annotation line: {line[:50]}...")
                    continue

                yield {
                    "seqid": parts[COL_SEQID],
                    "type": parts[COL_TYPE],
                    "start": start,
                    "end": end,
                    "strand": parts[COL_STRAND] if parts[COL_STRAND] in ("+", "-") else ".",
                    "attributes": parse_attrs(parts[COL_ATTRIBUTES]),
                }

    def load(self) -> ExonModel:
        """Parse the file and build the exon model.

        Returns:
            ExonModel with genes in order of first appearance.
        """
        exons_by_gene: dict[str, list[GenomicInterval]] = defaultdict(list)
        seen: dict[str, set[GenomicInterval]] = defaultdict(set)
        parents: dict[str, str] = {}
        pending: list[tuple[list[str], GenomicInterval]] = []
        sequence_names: set[str] = set()

        for feature in self._iter_features():
            sequence_names.add(feature["seqid"])
            attributes = feature["attributes"]
            if feature["type"] != self.feature:
                # GFF3 transcripts link exons to their gene
                if "ID" in attributes and "Parent" in attributes:
                    parents[attributes["ID"]] = attributes["Parent"].split(",")[0]
                continue

            exon = GenomicInterval(
                feature["seqid"], feature["start"], feature["end"], feature["strand"]
            )
            if self.gene_attribute is not None:
                gene_id = attributes.get(self.gene_attribute)
                if gene_id is None:
                    self.skipped_lines += 1
                    continue
                pending.append(([gene_id], exon))
            else:
                parent_ids = [p for p in attributes.get("Parent", "").split(",") if p]
                if not parent_ids:
                    self.skipped_lines += 1
                    continue
                pending.append((parent_ids, exon))

        for parent_ids, exon in pending:
            gene_ids = []
            for parent_id in parent_ids:
                gene_id = parent_id if self.gene_attribute is not None else _resolve_gene(parent_id, parents)
                if gene_id not in gene_ids:
                    gene_ids.append(gene_id)
            for gene_id in gene_ids:
                if exon not in seen[gene_id]:
                    seen[gene_id].add(exon)
                    exons_by_gene[gene_id].append(exon)

        if self.skipped_lines:
            logger.warning(f"Skipped {self.skipped_lines} annotation records in {self.path.name}")

        extra = (self.sequence_regions | sequence_names) - {e[0].seqid for e in exons_by_gene.values()}
        model = ExonModel(exons_by_gene, extra_sequence_names=extra)
        logger.info(
            f"Loaded {model.n_genes} genes with "
            f"{sum(len(e) for e in exons_by_gene.values())} exons from {self.path.name}"
        )
        return model


def _resolve_gene(feature_id: str, parents: dict[str, str]) -> str:
    """Follow Parent links up to the top-level feature."""
    seen = {feature_id}
    while feature_id in parents:
        feature_id = parents[feature_id]
        if feature_id in seen:
            break
        seen.add(feature_id)
    return feature_id


def load_exon_model(
    path: Path | str,
    feature: str = FEATURE_EXON,
    gene_attribute: str | None = None,
) -> ExonModel:
    """Load an exon-by-gene model from a GFF3 or GTF file.

    Args:
        path: Annotation path (``.gtf``, ``.gff``, ``.gff3``, optionally ``.gz``).
        feature: Feature type grouped as exons.
        gene_attribute: Attribute holding the gene id (GTF default: gene_id).

    Returns:
        ExonModel.
    """
    return AnnotationLoader(path, feature=feature, gene_attribute=gene_attribute).load()
