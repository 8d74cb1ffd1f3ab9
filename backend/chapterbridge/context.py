"""Per-run alignment context.

Review note:
- 取代旧的模块级全局引擎/客户端：入口（CLI / API 依赖）通过 ``open_context`` 获取，
  退出时无论成功与否都会释放数据库引擎和 LLM 客户端。
- LLM / Embedding 客户端按需懒加载，纯向量算法不要求配置 OPENAI_API_KEY。
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chapterbridge.config import Settings, settings as default_settings
from chapterbridge.database import create_engine_and_sessionmaker, init_db
from chapterbridge.services.retrieval.embedding_client import EmbeddingClient
from chapterbridge.utils.openai_helper import StructuredCompletionClient

logger = logging.getLogger("uvicorn.error")


class AlignmentContext:
    """一次运行所需的全部外部资源"""

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession],
        llm: Optional[StructuredCompletionClient] = None,
        embedder: Optional[EmbeddingClient] = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.session_maker = session_maker
        self._llm = llm
        self._embedder = embedder

    def session(self) -> AsyncSession:
        return self.session_maker()

    @property
    def llm(self) -> StructuredCompletionClient:
        if self._llm is None:
            s = self.settings
            self._llm = StructuredCompletionClient(
                api_key=s.OPENAI_API_KEY,
                base_url=s.OPENAI_BASE_URL,
                model=s.OPENAI_MODEL,
                temperature=s.OPENAI_TEMPERATURE,
                max_tokens=s.OPENAI_MAX_OUTPUT_TOKENS,
                timeout_sec=s.OPENAI_TIMEOUT_SEC,
            )
        return self._llm

    @property
    def embedder(self) -> EmbeddingClient:
        if self._embedder is None:
            s = self.settings
            self._embedder = EmbeddingClient(
                base_url=s.EMBEDDING_BASE_URL,
                api_key=s.embedding_api_key,
                model=s.EMBEDDING_MODEL,
                timeout_sec=s.EMBEDDING_TIMEOUT_SEC,
                max_retries=s.EMBEDDING_MAX_RETRIES,
                dimensions=s.EMBEDDING_DIM,
            )
        return self._embedder

    async def close(self) -> None:
        try:
            if self._llm is not None:
                await self._llm.close()
        finally:
            self._llm = None
            await self.engine.dispose()


@asynccontextmanager
async def open_context(
    settings: Optional[Settings] = None,
    llm: Optional[StructuredCompletionClient] = None,
    embedder: Optional[EmbeddingClient] = None,
    create_tables: bool = True,
) -> AsyncIterator[AlignmentContext]:
    """创建运行上下文，退出时保证释放"""
    settings = settings or default_settings
    engine, session_maker = create_engine_and_sessionmaker(settings.DATABASE_URL, echo=settings.DEBUG)
    ctx = AlignmentContext(settings, engine, session_maker, llm=llm, embedder=embedder)
    try:
        if create_tables:
            await init_db(engine)
        yield ctx
    finally:
        await ctx.close()
        logger.debug("align-context-closed url=%s", settings.DATABASE_URL)
