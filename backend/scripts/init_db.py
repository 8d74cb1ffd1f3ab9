"""初始化数据库并添加示例数据"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select, text

from chapterbridge.config import settings
from chapterbridge.context import open_context
from chapterbridge.models import Edition, Segment

SAMPLE_EDITIONS = [
    {
        "title": "示例小说",
        "media_type": "novel",
        "segments": [
            (1, ["主角在雨夜捡到一把旧剑", "剑中醒来一位沉睡的剑灵"], ["林远", "剑灵"]),
            (2, ["林远拜入青云宗", "与师兄比试落败"], ["林远", "师兄"]),
            (3, ["宗门大比开幕", "林远以剑灵之力逆转"], ["林远", "剑灵", "宗主"]),
        ],
    },
    {
        "title": "示例动画",
        "media_type": "anime",
        "segments": [
            (1, ["雨夜拾剑，剑灵苏醒", "林远决定拜师"], ["林远", "剑灵"]),
            (2, ["青云宗入门试炼", "宗门大比上的逆转"], ["林远", "宗主"]),
        ],
    },
]


async def init_sample_data(reset: bool = False):
    """创建表并写入示例版本 / 段落"""
    async with open_context(settings) as ctx:
        async with ctx.session() as session:
            if reset:
                # 强制清空所有表（用于重新初始化）
                for table in (
                    "segment_mappings",
                    "segment_event_fingerprints",
                    "segment_fingerprints",
                    "segments",
                    "editions",
                ):
                    await session.execute(text(f"DELETE FROM {table}"))
                await session.commit()

            existing = (await session.execute(select(Edition.id).limit(1))).first()
            if existing:
                print("ℹ️ 数据库已有数据，跳过示例数据（使用 --reset 重新初始化）")
                return

            print("📝 开始添加示例数据...")
            for item in SAMPLE_EDITIONS:
                edition = Edition(title=item["title"], media_type=item["media_type"])
                session.add(edition)
                await session.flush()
                for number, events, characters in item["segments"]:
                    session.add(
                        Segment(
                            edition_id=edition.id,
                            number=number,
                            title=f"{item['title']} #{number}",
                            events=json.dumps(events, ensure_ascii=False),
                            summary=" ".join(events),
                            characters=json.dumps(characters, ensure_ascii=False),
                            time_context="present",
                        )
                    )
                print(f"✅ 版本 {edition.id}: {item['title']} ({item['media_type']}) × {len(item['segments'])}")
            await session.commit()
    print("🎉 示例数据初始化完成")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="初始化 chapterbridge 数据库")
    parser.add_argument("--reset", action="store_true", help="清空已有数据后重新写入示例")
    args = parser.parse_args()
    asyncio.run(init_sample_data(reset=args.reset))
