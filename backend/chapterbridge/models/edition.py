"""版本（Edition）模型"""
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from chapterbridge.models.base import Base

MEDIA_TYPES = ("novel", "anime", "manhwa")


class Edition(Base):
    """版本表：同一故事的一种媒介形式（小说 / 动画 / 条漫）"""
    __tablename__ = "editions"
    __table_args__ = (
        CheckConstraint(
            "media_type IN ('novel', 'anime', 'manhwa')",
            name="ck_editions_media_type",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    media_type = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # 关系
    segments = relationship("Segment", back_populates="edition", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Edition {self.id} {self.media_type}>"
