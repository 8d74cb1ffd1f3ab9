"""模型包初始化"""
from chapterbridge.models.base import Base
from chapterbridge.models.edition import Edition, MEDIA_TYPES
from chapterbridge.models.segment import Segment
from chapterbridge.models.fingerprint import SegmentFingerprint, SegmentEventFingerprint
from chapterbridge.models.mapping import SegmentMapping, MAPPING_STATUSES

__all__ = [
    "Base",
    "Edition",
    "MEDIA_TYPES",
    "Segment",
    "SegmentFingerprint",
    "SegmentEventFingerprint",
    "SegmentMapping",
    "MAPPING_STATUSES",
]
