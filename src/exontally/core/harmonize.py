"""Sequence-name harmonization between annotation and alignments.

Annotations and alignment files often name the same reference sequences
differently ("1" vs "Chr1"). An explicit rename table maps annotation names
onto alignment names; any alignment name left without a model counterpart
is reported, never guessed.

Example:
    >>> from exontally.core.harmonize import harmonize
    >>> model = harmonize(model, {"Chr1"}, {"1": "Chr1"})
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping

from exontally.core.models import ExonModel
from exontally.errors import NamingMismatchError

logger = logging.getLogger(__name__)


def check_injective(table: Mapping[str, str], names: Iterable[str] | None = None) -> None:
    """Verify that no two names are renamed onto the same target.

    Args:
        table: Rename table (old -> new).
        names: Names actually in use (defaults to the table keys). Names
            absent from the table keep their name and can collide too.

    Raises:
        NamingMismatchError: If two distinct names end up with one name.
    """
    used = set(table) if names is None else set(names)
    targets: dict[str, list[str]] = defaultdict(list)
    for name in used:
        targets[table.get(name, name)].append(name)

    clashes = {new: sorted(old) for new, old in targets.items() if len(old) > 1}
    if clashes:
        detail = "; ".join(f"{', '.join(old)} -> {new}" for new, old in sorted(clashes.items()))
        raise NamingMismatchError(
            f"Rename table maps several sequence names onto one: {detail}",
            missing=[],
        )


def invert_rename_table(table: Mapping[str, str]) -> dict[str, str]:
    """Reverse a rename table.

    Raises:
        NamingMismatchError: If the table is not injective.
    """
    check_injective(table)
    return {new: old for old, new in table.items()}


def harmonize(
    model: ExonModel,
    alignment_names: Iterable[str],
    rename_table: Mapping[str, str] | None = None,
) -> ExonModel:
    """Rename a gene model's sequences to the alignment naming convention.

    Args:
        model: Gene model in annotation naming.
        alignment_names: Sequence names used by the reads.
        rename_table: Mapping of annotation name to alignment name.

    Returns:
        A new model whose sequence names match the alignments.

    Raises:
        NamingMismatchError: If an alignment name has no counterpart in the
            renamed model, or the table merges distinct model names.
    """
    table = dict(rename_table or {})
    check_injective(table, model.sequence_names())

    renamed = model.renamed(table) if table else model
    known = renamed.sequence_names()
    missing = sorted(set(alignment_names) - known)
    if missing:
        raise NamingMismatchError(
            f"{len(missing)} sequence name(s) used by the alignments are not in the gene model "
            f"after renaming: {', '.join(missing)}. Extend the rename table to cover them.",
            missing=missing,
        )

    unused = sorted(set(table) - model.sequence_names())
    if unused:
        logger.debug(f"Rename table entries not used by the gene model: {', '.join(unused)}")

    logger.info(
        f"Harmonized {len(known)} sequence names "
        f"({sum(1 for n in model.sequence_names() if n in table)} renamed)"
    )
    return renamed
