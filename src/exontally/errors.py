"""Exception types raised by exontally.

Fatal errors (naming mismatch, duplicate sample identity, empty gene model)
abort a run before any output is written. ``SampleProcessingError`` is
confined to one sample and is collected into the run report.
"""

from __future__ import annotations


class ExontallyError(Exception):
    """Base class for all exontally errors."""


class NamingMismatchError(ExontallyError):
    """Sequence names in the alignments have no counterpart in the gene model.

    Attributes:
        missing: Sorted alignment sequence names with no model counterpart.
    """

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = sorted(missing or [])


class SampleProcessingError(ExontallyError):
    """Processing of one sample failed.

    Attributes:
        sample_id: Identifier of the failed sample.
    """

    def __init__(self, sample_id: str, message: str) -> None:
        super().__init__(f"{sample_id}: {message}")
        self.sample_id = sample_id
        self.reason = message

    def __reduce__(self):
        # Keep the exception picklable across process pools
        return (type(self), (self.sample_id, self.reason))


class DuplicateSampleIdentityError(ExontallyError):
    """Two input files resolve to the same derived sample identifier."""

    def __init__(self, sample_id: str, paths: list[str]) -> None:
        super().__init__(
            f"Sample id '{sample_id}' derived from multiple files: {', '.join(paths)}"
        )
        self.sample_id = sample_id
        self.paths = list(paths)

    def __reduce__(self):
        return (type(self), (self.sample_id, self.paths))


class EmptyGeneModelError(ExontallyError):
    """The gene model contains no genes."""
