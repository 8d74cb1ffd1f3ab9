"""语义指纹的CRUD操作"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, distinct
from typing import List, Optional
import json

from chapterbridge.models import Segment, SegmentFingerprint, SegmentEventFingerprint


class CRUDFingerprint:
    """段落级 / 事件级指纹CRUD操作"""

    async def get_segment(self, db: AsyncSession, segment_id: int) -> Optional[SegmentFingerprint]:
        """获取段落级指纹"""
        result = await db.execute(
            select(SegmentFingerprint).where(SegmentFingerprint.segment_id == segment_id)
        )
        return result.scalar_one_or_none()

    async def list_segment_for_edition(self, db: AsyncSession, edition_id: int) -> List[SegmentFingerprint]:
        """获取某版本的全部段落级指纹（按编号升序）"""
        result = await db.execute(
            select(SegmentFingerprint)
            .where(SegmentFingerprint.edition_id == edition_id)
            .order_by(SegmentFingerprint.segment_number.asc())
        )
        return list(result.scalars().all())

    async def list_events_for_edition(self, db: AsyncSession, edition_id: int) -> List[SegmentEventFingerprint]:
        """获取某版本的全部事件级指纹（按编号、事件序号升序）"""
        result = await db.execute(
            select(SegmentEventFingerprint)
            .where(SegmentEventFingerprint.edition_id == edition_id)
            .order_by(
                SegmentEventFingerprint.segment_number.asc(),
                SegmentEventFingerprint.event_idx.asc(),
            )
        )
        return list(result.scalars().all())

    async def list_events_for_segment(self, db: AsyncSession, segment_id: int) -> List[SegmentEventFingerprint]:
        """获取某段落的事件级指纹"""
        result = await db.execute(
            select(SegmentEventFingerprint)
            .where(SegmentEventFingerprint.segment_id == segment_id)
            .order_by(SegmentEventFingerprint.event_idx.asc())
        )
        return list(result.scalars().all())

    async def segments_missing_fingerprint(self, db: AsyncSession, edition_id: int, limit: int = 0) -> List[Segment]:
        """获取尚未生成段落级指纹的段落"""
        have = select(SegmentFingerprint.segment_id).where(SegmentFingerprint.edition_id == edition_id)
        query = (
            select(Segment)
            .where(Segment.edition_id == edition_id, Segment.id.not_in(have))
            .order_by(Segment.number.asc())
        )
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def segments_missing_events(self, db: AsyncSession, edition_id: int, limit: int = 0) -> List[Segment]:
        """获取尚未生成事件级指纹的段落"""
        have = select(distinct(SegmentEventFingerprint.segment_id)).where(
            SegmentEventFingerprint.edition_id == edition_id
        )
        query = (
            select(Segment)
            .where(Segment.edition_id == edition_id, Segment.id.not_in(have))
            .order_by(Segment.number.asc())
        )
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def upsert_segment(
        self,
        db: AsyncSession,
        segment: Segment,
        vectors: dict,
        model: str,
        dim: int,
    ) -> SegmentFingerprint:
        """写入段落级指纹（vectors: channel -> 向量）"""
        fp = await self.get_segment(db, segment.id)
        if fp is None:
            fp = SegmentFingerprint(
                segment_id=segment.id,
                edition_id=segment.edition_id,
                segment_number=segment.number,
                embed_model=model,
                embed_dim=dim,
            )
            db.add(fp)
        for channel in ("summary", "events", "entities"):
            vector = vectors.get(channel)
            setattr(fp, f"embedding_{channel}", json.dumps(vector) if vector else None)
        fp.embed_model = model
        fp.embed_dim = dim

        await db.commit()
        await db.refresh(fp)
        return fp

    async def upsert_event(
        self,
        db: AsyncSession,
        segment: Segment,
        event_idx: int,
        event_text: str,
        vector: List[float],
        model: str,
        dim: int,
        commit: bool = True,
    ) -> SegmentEventFingerprint:
        """写入事件级指纹，(segment_id, event_idx) 已存在时覆盖；commit=False 时只 flush，由调用方统一提交"""
        result = await db.execute(
            select(SegmentEventFingerprint).where(
                SegmentEventFingerprint.segment_id == segment.id,
                SegmentEventFingerprint.event_idx == event_idx,
            )
        )
        fp = result.scalar_one_or_none()
        if fp is None:
            fp = SegmentEventFingerprint(
                segment_id=segment.id,
                edition_id=segment.edition_id,
                segment_number=segment.number,
                event_idx=event_idx,
            )
            db.add(fp)
        fp.event_text = event_text
        fp.embedding = json.dumps(vector)
        fp.embed_model = model
        fp.embed_dim = dim

        if not commit:
            await db.flush()
            return fp
        await db.commit()
        await db.refresh(fp)
        return fp


# 创建实例
fingerprint_crud = CRUDFingerprint()
