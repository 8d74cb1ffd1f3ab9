"""Unit boundary shared by the sequential matchers.

A unit either persists a mapping, is skipped (:class:`MappingRejected`) or
errors. Fatal errors propagate and stop the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.services.alignment.errors import (
    AlignmentError,
    EditionNotFoundError,
    MappingRejected,
    SegmentNotFoundError,
)
from chapterbridge.services.alignment.ordinals import format_ordinal, midpoint, ordinal_json, to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.retrieval.embedding_client import EmbeddingServiceError
from chapterbridge.utils.openai_helper import LLMSchemaError, LLMServiceError

logger = logging.getLogger("uvicorn.error")

FATAL_ERRORS = (EditionNotFoundError, SegmentNotFoundError)
UNIT_ERRORS = (
    AlignmentError,
    LLMServiceError,
    LLMSchemaError,
    EmbeddingServiceError,
    SQLAlchemyError,
    ValueError,
)


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


async def settle_unit(
    db: AsyncSession,
    summary: RunSummary,
    from_number,
    propose: Callable[[], Awaitable[ProposedMapping]],
) -> Optional[ProposedMapping]:
    """Propose, persist and record one unit.

    Returns the persisted proposal, or ``None`` when the unit was skipped or
    errored. The caller advances its checkpoint only on a returned proposal.
    """
    try:
        proposal = await propose()
        await mapping_crud.upsert(db, proposal)
    except FATAL_ERRORS:
        raise
    except MappingRejected as exc:
        summary.skipped(from_number, exc.reason)
        return None
    except UNIT_ERRORS as exc:
        await db.rollback()
        summary.errored(from_number, describe_error(exc))
        return None
    summary.matched(proposal)
    return proposal


@dataclass
class Checkpoint:
    """Last accepted decision of a scan: source ordinal and target range."""

    from_number: Decimal
    to_start: Decimal
    to_end: Decimal

    @property
    def midpoint(self) -> Decimal:
        return midpoint(self.to_start, self.to_end)

    @classmethod
    def from_proposal(cls, proposal: ProposedMapping) -> "Checkpoint":
        return cls(from_number=proposal.from_number, to_start=proposal.start, to_end=proposal.end)

    def to_dict(self) -> dict:
        return {
            "from_number": ordinal_json(self.from_number),
            "to_start": ordinal_json(self.to_start),
            "to_end": ordinal_json(self.to_end),
        }


async def load_checkpoint(db: AsyncSession, from_edition_id: int, to_edition_id: int) -> Optional[Checkpoint]:
    """Checkpoint from the latest persisted mapping of the edition pair, if any."""
    latest = await mapping_crud.latest_for_pair(db, from_edition_id, to_edition_id)
    if latest is None:
        return None
    checkpoint = Checkpoint(
        from_number=to_ordinal(latest.segment_number),
        to_start=to_ordinal(latest.to_segment_start),
        to_end=to_ordinal(latest.to_segment_end),
    )
    logger.info(
        "align-checkpoint-loaded from_edition=%s to_edition=%s from=%s to_end=%s",
        from_edition_id,
        to_edition_id,
        format_ordinal(checkpoint.from_number),
        format_ordinal(checkpoint.to_end),
    )
    return checkpoint


def pending_units(segments, checkpoint: Optional[Checkpoint], limit: int = 0) -> list:
    """Source segments after the checkpoint's source ordinal, in ascending order."""
    units = sorted(segments, key=lambda s: to_ordinal(s.number))
    if checkpoint is not None:
        units = [s for s in units if to_ordinal(s.number) > checkpoint.from_number]
    if limit:
        units = units[:limit]
    return units


def detach(db: AsyncSession, objects: list) -> list:
    """Expunge read-only rows so a unit-level rollback does not expire them."""
    for obj in objects:
        db.expunge(obj)
    return objects
