"""对齐结果（SegmentMapping）模型"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Float,
    DateTime,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    CheckConstraint,
)
from datetime import datetime

from chapterbridge.models.base import Base

MAPPING_STATUSES = ("proposed", "approved")


class SegmentMapping(Base):
    """映射表：源段落 -> 目标版本中的 [start, end] 区间

    (from_segment_id, to_edition_id) 唯一，重复计算覆盖旧值。
    """
    __tablename__ = "segment_mappings"
    __table_args__ = (
        UniqueConstraint("from_segment_id", "to_edition_id", name="uq_mappings_segment_target"),
        CheckConstraint("status IN ('proposed', 'approved')", name="ck_mappings_status"),
        CheckConstraint("to_segment_start <= to_segment_end", name="ck_mappings_range"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_segment_id = Column(Integer, ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True)
    from_edition_id = Column(Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_number = Column(Numeric(10, 2, asdecimal=True), nullable=False)
    to_edition_id = Column(Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    to_segment_start = Column(Numeric(10, 2, asdecimal=True), nullable=False)
    to_segment_end = Column(Numeric(10, 2, asdecimal=True), nullable=False)
    confidence = Column(Float, nullable=False)
    status = Column(String(20), default="proposed", nullable=False)
    algorithm_version = Column(String(100), nullable=False)
    evidence = Column(Text, nullable=True)  # JSON：按算法区分的证据结构
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SegmentMapping {self.from_segment_id}->{self.to_edition_id} [{self.to_segment_start},{self.to_segment_end}]>"
