"""FastAPI应用主文件"""
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from chapterbridge.config import settings
from chapterbridge.database import create_engine_and_sessionmaker, init_db

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("启动 ChapterBridge 对齐服务...")

    # 启动时建表，引擎用完即释放；请求期间由各自的 AlignmentContext 管理连接
    engine, _ = create_engine_and_sessionmaker(settings.DATABASE_URL, echo=settings.DEBUG)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    logger.info("数据库初始化完成 url=%s", settings.DATABASE_URL)

    yield

    logger.info("关闭 ChapterBridge 对齐服务...")


# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="跨版本（动画 / 小说 / 条漫）章节对齐服务",
    lifespan=lifespan,
)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": "ChapterBridge alignment API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


# 导入并注册路由
from chapterbridge.api.v1 import alignment  # noqa: E402
app.include_router(alignment.router, prefix="/api/v1/alignment", tags=["alignment"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chapterbridge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
