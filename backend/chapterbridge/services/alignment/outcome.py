"""Per-unit outcomes and run summaries.

Each source unit ends in exactly one of ``matched`` (mapping persisted),
``skipped`` (insufficient evidence or a deliberate rejection) or
``errored`` (I/O or schema failure after bounded retries).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
import logging

from chapterbridge.schemas.evidence import _EvidenceBase
from chapterbridge.services.alignment.ordinals import format_ordinal, ordinal_json, to_ordinal
from chapterbridge.services.alignment.policy import PROPOSED
from chapterbridge.services.alignment.ranges import clamp

logger = logging.getLogger("uvicorn.error")

MATCHED = "matched"
SKIPPED = "skipped"
ERRORED = "errored"


@dataclass
class ProposedMapping:
    from_segment_id: int
    from_edition_id: int
    from_number: Decimal
    to_edition_id: int
    start: Decimal
    end: Decimal
    confidence: float
    algorithm_version: str
    evidence: _EvidenceBase
    status: str = PROPOSED

    def __post_init__(self) -> None:
        self.from_number = to_ordinal(self.from_number)
        self.start = to_ordinal(self.start)
        self.end = to_ordinal(self.end)
        if self.start > self.end:
            raise ValueError(
                f"invalid range start={format_ordinal(self.start)} end={format_ordinal(self.end)}"
            )
        self.confidence = clamp(float(self.confidence))

    def to_dict(self) -> dict:
        return {
            "from_number": ordinal_json(self.from_number),
            "to_start": ordinal_json(self.start),
            "to_end": ordinal_json(self.end),
            "confidence": round(self.confidence, 4),
            "status": self.status,
            "algorithm_version": self.algorithm_version,
        }


@dataclass
class UnitOutcome:
    from_number: Decimal
    status: str
    reason: str = ""
    mapping: Optional[ProposedMapping] = None

    def to_dict(self) -> dict:
        data = {
            "from_number": ordinal_json(self.from_number),
            "status": self.status,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.mapping is not None:
            data["mapping"] = self.mapping.to_dict()
        return data


@dataclass
class RunSummary:
    algorithm: str
    from_edition_id: int
    to_edition_id: int
    outcomes: List[UnitOutcome] = field(default_factory=list)

    def matched(self, mapping: ProposedMapping) -> UnitOutcome:
        outcome = UnitOutcome(from_number=mapping.from_number, status=MATCHED, mapping=mapping)
        self.outcomes.append(outcome)
        logger.info(
            "align-unit-matched algo=%s from=%s to=[%s,%s] conf=%.3f",
            self.algorithm,
            format_ordinal(mapping.from_number),
            format_ordinal(mapping.start),
            format_ordinal(mapping.end),
            mapping.confidence,
        )
        return outcome

    def skipped(self, from_number, reason: str) -> UnitOutcome:
        outcome = UnitOutcome(from_number=to_ordinal(from_number), status=SKIPPED, reason=reason)
        self.outcomes.append(outcome)
        logger.info(
            "align-unit-skipped algo=%s from=%s reason=%s",
            self.algorithm,
            format_ordinal(from_number),
            reason,
        )
        return outcome

    def errored(self, from_number, reason: str) -> UnitOutcome:
        outcome = UnitOutcome(from_number=to_ordinal(from_number), status=ERRORED, reason=reason[:300])
        self.outcomes.append(outcome)
        logger.warning(
            "align-unit-errored algo=%s from=%s reason=%s",
            self.algorithm,
            format_ordinal(from_number),
            reason[:180],
        )
        return outcome

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def matched_count(self) -> int:
        return self._count(MATCHED)

    @property
    def skipped_count(self) -> int:
        return self._count(SKIPPED)

    @property
    def errored_count(self) -> int:
        return self._count(ERRORED)

    def finish(self) -> "RunSummary":
        logger.info(
            "align-run-done algo=%s from_edition=%s to_edition=%s matched=%d skipped=%d errored=%d",
            self.algorithm,
            self.from_edition_id,
            self.to_edition_id,
            self.matched_count,
            self.skipped_count,
            self.errored_count,
        )
        return self

    def to_dict(self) -> dict:
        return {
            "algorithm": self.algorithm,
            "from_edition_id": self.from_edition_id,
            "to_edition_id": self.to_edition_id,
            "matched": self.matched_count,
            "skipped": self.skipped_count,
            "errored": self.errored_count,
            "units": [o.to_dict() for o in self.outcomes],
        }
