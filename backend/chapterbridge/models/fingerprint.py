"""语义指纹（向量）模型

向量以 JSON 文本存储，检索时在内存中构建 numpy 索引。
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Numeric, UniqueConstraint
from datetime import datetime
import json

from chapterbridge.models.base import Base


def _load_vector(raw):
    if not raw:
        return None
    value = json.loads(raw)
    return [float(v) for v in value] if value else None


class SegmentFingerprint(Base):
    """段落级指纹：summary / events / entities 三个通道"""
    __tablename__ = "segment_fingerprints"

    segment_id = Column(Integer, ForeignKey("segments.id", ondelete="CASCADE"), primary_key=True)
    edition_id = Column(Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_number = Column(Numeric(10, 2, asdecimal=True), nullable=False)
    embedding_summary = Column(Text, nullable=True)
    embedding_events = Column(Text, nullable=True)
    embedding_entities = Column(Text, nullable=True)
    embed_model = Column(String(100), nullable=False)
    embed_dim = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def channel_vector(self, channel: str):
        """读取指定通道的向量（未生成时返回 None）"""
        return _load_vector(getattr(self, f"embedding_{channel}"))

    def __repr__(self):
        return f"<SegmentFingerprint segment={self.segment_id}>"


class SegmentEventFingerprint(Base):
    """事件级指纹：每个段落最多若干条事件，各自一个向量"""
    __tablename__ = "segment_event_fingerprints"
    __table_args__ = (
        UniqueConstraint("segment_id", "event_idx", name="uq_event_fingerprints_segment_idx"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(Integer, ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True)
    edition_id = Column(Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_number = Column(Numeric(10, 2, asdecimal=True), nullable=False, index=True)
    event_idx = Column(Integer, nullable=False)  # 0 起
    event_text = Column(Text, nullable=False)
    embedding = Column(Text, nullable=False)
    embed_model = Column(String(100), nullable=False)
    embed_dim = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def vector(self):
        return _load_vector(self.embedding)

    def __repr__(self):
        return f"<SegmentEventFingerprint segment={self.segment_id} idx={self.event_idx}>"
