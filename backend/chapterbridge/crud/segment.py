"""版本与段落的CRUD操作（只读）"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional, Tuple
from decimal import Decimal

from chapterbridge.models import Edition, Segment
from chapterbridge.services.alignment.errors import EditionNotFoundError
from chapterbridge.services.alignment.ordinals import to_ordinal


class CRUDEdition:
    """版本CRUD操作"""

    async def get(self, db: AsyncSession, edition_id: int) -> Optional[Edition]:
        """获取版本"""
        result = await db.execute(select(Edition).where(Edition.id == edition_id))
        return result.scalar_one_or_none()

    async def require(self, db: AsyncSession, edition_id: int) -> Edition:
        """获取版本，不存在时抛出 EditionNotFoundError"""
        edition = await self.get(db, edition_id)
        if edition is None:
            raise EditionNotFoundError(edition_id)
        return edition

    async def bounds(self, db: AsyncSession, edition_id: int) -> Optional[Tuple[Decimal, Decimal]]:
        """获取版本内段落编号的最小/最大值，没有段落时返回 None"""
        result = await db.execute(
            select(func.min(Segment.number), func.max(Segment.number)).where(Segment.edition_id == edition_id)
        )
        low, high = result.one()
        if low is None or high is None:
            return None
        return to_ordinal(low), to_ordinal(high)


class CRUDSegment:
    """段落CRUD操作"""

    async def get(self, db: AsyncSession, segment_id: int) -> Optional[Segment]:
        result = await db.execute(select(Segment).where(Segment.id == segment_id))
        return result.scalar_one_or_none()

    async def get_by_number(self, db: AsyncSession, edition_id: int, number) -> Optional[Segment]:
        """按编号获取段落"""
        result = await db.execute(
            select(Segment).where(
                Segment.edition_id == edition_id,
                Segment.number == to_ordinal(number),
            )
        )
        return result.scalar_one_or_none()

    async def list_range(
        self,
        db: AsyncSession,
        edition_id: int,
        start=None,
        end=None,
    ) -> List[Segment]:
        """获取编号区间 [start, end] 内的段落（按编号升序，两端可省略）"""
        query = select(Segment).where(Segment.edition_id == edition_id)
        if start is not None:
            query = query.where(Segment.number >= to_ordinal(start))
        if end is not None:
            query = query.where(Segment.number <= to_ordinal(end))
        result = await db.execute(query.order_by(Segment.number.asc()))
        return list(result.scalars().all())

    async def get_many(self, db: AsyncSession, segment_ids: List[int]) -> Dict[int, Segment]:
        """按 id 批量获取段落"""
        if not segment_ids:
            return {}
        result = await db.execute(select(Segment).where(Segment.id.in_(list(segment_ids))))
        return {s.id: s for s in result.scalars().all()}


# 创建实例
edition_crud = CRUDEdition()
segment_crud = CRUDSegment()
