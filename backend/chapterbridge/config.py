"""应用配置"""
from pydantic_settings import BaseSettings
from pydantic import model_validator


class Settings(BaseSettings):
    """应用配置类"""

    # 应用信息
    APP_NAME: str = "ChapterBridge"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/chapterbridge.db"

    # LLM（OpenAI 兼容接口）
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4.1"
    OPENAI_TEMPERATURE: float = 0.0
    OPENAI_MAX_OUTPUT_TOKENS: int = 4096
    OPENAI_TIMEOUT_SEC: int = 120
    LLM_CONCURRENCY: int = 2

    # Embedding
    EMBEDDING_BASE_URL: str = "https://api.openai.com/v1"
    EMBEDDING_API_KEY: str = ""  # 留空时复用 OPENAI_API_KEY
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIM: int = 1536
    EMBEDDING_BATCH_SIZE: int = 50
    EMBEDDING_TIMEOUT_SEC: int = 60
    EMBEDDING_MAX_RETRIES: int = 3

    # 检索
    TOP_K: int = 20

    # 增量匹配窗口（LLM checkpoint）
    WINDOW_SIZE: int = 70  # 最小窗口宽度
    WINDOW_BEFORE: int = 25
    WINDOW_AFTER: int = 45
    MAX_WINDOW_SIZE: int = 200

    # 向量匹配窗口
    WINDOW: int = 80
    BACKTRACK: int = 3

    MIN_CONFIDENCE: float = 0.55
    ALGO_VERSION: str = "llm-gpt4.1-events-v1"

    # matching-all 回退
    ENABLE_FALLBACK: bool = False
    FALLBACK_WINDOW_SIZE: int = 40
    FALLBACK_CONFIDENCE_PENALTY: float = 0.6

    @model_validator(mode="before")
    @classmethod
    def treat_empty_env_as_unset(cls, data):
        """
        将空字符串环境变量按“未配置”处理。
        这样 .env 中留空不会覆盖默认值，也避免数值类型解析报错。
        """
        if not isinstance(data, dict):
            return data

        cleaned = dict(data)
        for field_name, field in cls.model_fields.items():
            default = field.default
            if default in (None, ""):
                continue
            if cleaned.get(field_name) == "":
                cleaned.pop(field_name, None)
        return cleaned

    @property
    def embedding_api_key(self) -> str:
        """Embedding 使用的 Key（未单独配置时回退到 OPENAI_API_KEY）"""
        return self.EMBEDDING_API_KEY or self.OPENAI_API_KEY

    class Config:
        env_file = (".env", "backend/.env")
        case_sensitive = True
        extra = "ignore"


# 全局配置实例（仅作为默认值来源，运行期状态由 AlignmentContext 持有）
settings = Settings()
