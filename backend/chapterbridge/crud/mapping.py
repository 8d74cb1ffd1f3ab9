"""映射结果的CRUD操作"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from chapterbridge.models import SegmentMapping
from chapterbridge.schemas.evidence import dump_evidence
from chapterbridge.services.alignment.outcome import ProposedMapping


class CRUDMapping:
    """映射CRUD操作"""

    async def get(self, db: AsyncSession, from_segment_id: int, to_edition_id: int) -> Optional[SegmentMapping]:
        """按 (源段落, 目标版本) 获取映射"""
        result = await db.execute(
            select(SegmentMapping).where(
                SegmentMapping.from_segment_id == from_segment_id,
                SegmentMapping.to_edition_id == to_edition_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, db: AsyncSession, proposal: ProposedMapping) -> SegmentMapping:
        """写入映射：同一 (源段落, 目标版本) 只保留一条，重复写入覆盖旧值"""
        mapping = await self.get(db, proposal.from_segment_id, proposal.to_edition_id)

        if mapping is None:
            mapping = SegmentMapping(
                from_segment_id=proposal.from_segment_id,
                to_edition_id=proposal.to_edition_id,
            )
            db.add(mapping)

        mapping.from_edition_id = proposal.from_edition_id
        mapping.segment_number = proposal.from_number
        mapping.to_segment_start = proposal.start
        mapping.to_segment_end = proposal.end
        mapping.confidence = proposal.confidence
        mapping.status = proposal.status
        mapping.algorithm_version = proposal.algorithm_version
        mapping.evidence = dump_evidence(proposal.evidence)

        await db.commit()
        await db.refresh(mapping)
        return mapping

    async def latest_for_pair(
        self,
        db: AsyncSession,
        from_edition_id: int,
        to_edition_id: int,
    ) -> Optional[SegmentMapping]:
        """获取该版本对中源编号最大的映射（作为 checkpoint 锚点）"""
        result = await db.execute(
            select(SegmentMapping)
            .where(
                SegmentMapping.from_edition_id == from_edition_id,
                SegmentMapping.to_edition_id == to_edition_id,
            )
            .order_by(SegmentMapping.segment_number.desc(), SegmentMapping.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_pair(
        self,
        db: AsyncSession,
        from_edition_id: int,
        to_edition_id: int,
    ) -> List[SegmentMapping]:
        """获取该版本对的全部映射（按源编号升序）"""
        result = await db.execute(
            select(SegmentMapping)
            .where(
                SegmentMapping.from_edition_id == from_edition_id,
                SegmentMapping.to_edition_id == to_edition_id,
            )
            .order_by(SegmentMapping.segment_number.asc())
        )
        return list(result.scalars().all())


# 创建实例
mapping_crud = CRUDMapping()
