"""段落（Segment）模型：一章 / 一集"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import json

from chapterbridge.models.base import Base


class Segment(Base):
    """段落表（上游流水线写入，对齐核心只读）"""
    __tablename__ = "segments"
    __table_args__ = (
        UniqueConstraint("edition_id", "number", name="uq_segments_edition_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    edition_id = Column(Integer, ForeignKey("editions.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Numeric(10, 2, asdecimal=True), nullable=False, index=True)  # 允许 12.5 这类半章
    title = Column(String(300), nullable=True)
    events = Column(Text, nullable=True)  # JSON 列表：["事件1", ...] 或 [{"text": ...}]
    summary_short = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    characters = Column(Text, nullable=True)  # JSON 列表
    locations = Column(Text, nullable=True)  # JSON 列表
    keywords = Column(Text, nullable=True)  # JSON 列表
    time_context = Column(String(20), nullable=True)  # present / flashback / future / unknown
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # 关系
    edition = relationship("Edition", back_populates="segments")

    def _json_list(self, raw):
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            return []
        return value if isinstance(value, list) else []

    @property
    def events_list(self) -> list:
        return self._json_list(self.events)

    @property
    def characters_list(self) -> list:
        return self._json_list(self.characters)

    @property
    def locations_list(self) -> list:
        return self._json_list(self.locations)

    @property
    def keywords_list(self) -> list:
        return self._json_list(self.keywords)

    def __repr__(self):
        return f"<Segment {self.edition_id}:{self.number}>"
