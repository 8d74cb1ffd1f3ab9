"""Alignment error taxonomy.

Fatal errors abort a run; everything else is caught at the unit boundary
and counted as ``errored`` by :class:`RunSummary`.
"""

from __future__ import annotations


class AlignmentError(RuntimeError):
    """Base class for alignment failures."""


class EditionNotFoundError(AlignmentError):
    """Referenced edition does not exist (fatal to the run)."""

    def __init__(self, edition_id: int) -> None:
        super().__init__(f"edition not found: id={edition_id}")
        self.edition_id = edition_id


class SegmentNotFoundError(AlignmentError):
    """A required segment or segment range is missing (fatal to the run)."""


class MappingRejected(AlignmentError):
    """Raised inside a matcher when a proposal is deliberately discarded.

    Not an error: the unit ends as ``skipped`` with ``reason``.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
