"""Fingerprint producer: embeds segment channels and per-event texts.

Review note:
- 只为缺失指纹的段落生成向量，可重复执行。
- 单个段落失败只记录并计数，不中断整批。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.fingerprint import fingerprint_crud
from chapterbridge.crud.segment import edition_crud
from chapterbridge.models import Segment
from chapterbridge.services.alignment.ordinals import format_ordinal
from chapterbridge.services.alignment.runner import detach
from chapterbridge.services.fingerprints.text import (
    MAX_EVENTS_PER_SEGMENT,
    build_entities_text,
    build_events_text,
    build_summary_text,
    parse_events,
)
from chapterbridge.services.retrieval.embedding_client import EmbeddingClient, EmbeddingServiceError

logger = logging.getLogger("uvicorn.error")


@dataclass
class BuildReport:
    edition_id: int
    kind: str
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "edition_id": self.edition_id,
            "kind": self.kind,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors[:20],
        }


def segment_channel_texts(segment: Segment) -> dict:
    return {
        "summary": build_summary_text(segment.summary_short, segment.summary),
        "events": build_events_text(segment.events_list),
        "entities": build_entities_text(
            segment.characters_list,
            segment.locations_list,
            segment.keywords_list,
        ),
    }


class FingerprintBuilder:
    def __init__(self, db: AsyncSession, client: EmbeddingClient, dim: int, batch_size: int = 50) -> None:
        self.db = db
        self.client = client
        self.dim = dim
        self.batch_size = batch_size

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        # EmbeddingClient 是同步 httpx 客户端，放到线程里执行
        return await asyncio.to_thread(self.client.embed_texts_batched, texts, self.batch_size)

    async def build_segment_fingerprints(self, edition_id: int, limit: int = 0) -> BuildReport:
        await edition_crud.require(self.db, edition_id)
        report = BuildReport(edition_id=edition_id, kind="segment")
        segments = detach(self.db, await fingerprint_crud.segments_missing_fingerprint(self.db, edition_id, limit=limit))

        for segment in segments:
            number = format_ordinal(segment.number)
            texts = segment_channel_texts(segment)
            channels = [c for c, t in texts.items() if t]
            if not channels:
                report.skipped += 1
                logger.info("fingerprint-skip edition=%s number=%s reason=no-text", edition_id, number)
                continue
            try:
                vectors = await self._embed([texts[c] for c in channels])
                await fingerprint_crud.upsert_segment(
                    self.db,
                    segment,
                    dict(zip(channels, vectors)),
                    model=self.client.model,
                    dim=self.dim,
                )
            except (EmbeddingServiceError, SQLAlchemyError, ValueError) as exc:
                await self.db.rollback()
                report.failed += 1
                report.errors.append(f"{number}: {exc}")
                logger.warning("fingerprint-failed edition=%s number=%s error=%s", edition_id, number, str(exc)[:180])
                continue
            report.processed += 1

        logger.info(
            "fingerprint-segments-done edition=%s processed=%d skipped=%d failed=%d",
            edition_id,
            report.processed,
            report.skipped,
            report.failed,
        )
        return report

    async def build_event_fingerprints(self, edition_id: int, limit: int = 0) -> BuildReport:
        await edition_crud.require(self.db, edition_id)
        report = BuildReport(edition_id=edition_id, kind="event")
        segments = detach(self.db, await fingerprint_crud.segments_missing_events(self.db, edition_id, limit=limit))

        for segment in segments:
            number = format_ordinal(segment.number)
            events = parse_events(segment.events_list)[:MAX_EVENTS_PER_SEGMENT]
            if not events:
                report.skipped += 1
                logger.info("fingerprint-skip edition=%s number=%s reason=no-events", edition_id, number)
                continue
            try:
                vectors = await self._embed(events)
                for idx, (text, vector) in enumerate(zip(events, vectors)):
                    await fingerprint_crud.upsert_event(
                        self.db,
                        segment,
                        event_idx=idx,
                        event_text=text,
                        vector=vector,
                        model=self.client.model,
                        dim=self.dim,
                        commit=False,
                    )
                await self.db.commit()
            except (EmbeddingServiceError, SQLAlchemyError, ValueError) as exc:
                await self.db.rollback()
                report.failed += 1
                report.errors.append(f"{number}: {exc}")
                logger.warning("fingerprint-failed edition=%s number=%s error=%s", edition_id, number, str(exc)[:180])
                continue
            report.processed += 1

        logger.info(
            "fingerprint-events-done edition=%s processed=%d skipped=%d failed=%d",
            edition_id,
            report.processed,
            report.skipped,
            report.failed,
        )
        return report
