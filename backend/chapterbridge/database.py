"""数据库引擎与会话工厂

Review note:
- 不再创建模块级全局引擎；每次运行由 AlignmentContext 调用这里构建并负责释放。
- 内存 sqlite 使用 StaticPool，保证同一运行内所有会话看到同一个库。
"""
from typing import Tuple
import os

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def create_engine_and_sessionmaker(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """按 URL 创建异步引擎和会话工厂"""
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
        database = make_url(database_url).database
        if database and database != ":memory:":
            # 确保 sqlite 文件所在目录存在
            os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)

    engine = create_async_engine(database_url, **kwargs)
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    return engine, session_maker


async def init_db(engine: AsyncEngine) -> None:
    """初始化数据库表"""
    from chapterbridge.models import Base  # noqa: F401  注册全部模型

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
