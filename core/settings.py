from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, PostgresDsn, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CustomSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env.docker",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class AppSettings(CustomSettings):
    ENVIRONMENT: Literal["local", "dev", "prod"] = Field(default="local")
    LOG_LEVEL: str = Field(default="INFO")
    JSON_LOGS: bool = Field(default=True)


class PgDbSettings(CustomSettings):
    POSTGRES_ENGINE: str = Field(default="postgresql+asyncpg")
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: SecretStr = Field(default="postgres")
    POSTGRES_DB: str = Field(default="chat_memory")
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)
    DATABASE_URL: PostgresDsn | str = Field(default="")

    @model_validator(mode="before")
    def validate_postgres_dsn(cls, data: dict):
        if isinstance(data, dict) and not data.get("DATABASE_URL"):
            _built_uri = PostgresDsn.build(
                scheme=data.get("POSTGRES_ENGINE", "postgresql+asyncpg"),
                username=data.get("POSTGRES_USER", "postgres"),
                password=data.get("POSTGRES_PASSWORD", "postgres"),
                host=data.get("POSTGRES_HOST", "localhost"),
                port=int(data.get("POSTGRES_PORT", 5432)),
                path=data.get("POSTGRES_DB", "chat_memory"),
            ).unicode_string()
            data["DATABASE_URL"] = _built_uri
        return data


class OpenAISettings(CustomSettings):
    """Configuration for the OpenAI-backed embedding and chat models.

    Env vars:
    - OPENAI_API_KEY
    - EMBEDDING_MODEL
    - CHAT_MODEL
    - CHAT_TEMPERATURE
    - EMBEDDING_MAX_RETRIES
    - EMBEDDING_RETRY_DELAY
    """

    OPENAI_API_KEY: SecretStr = Field(default="")
    EMBEDDING_MODEL: str = Field(default="text-embedding-3-small")
    CHAT_MODEL: str = Field(default="gpt-4o-mini")
    CHAT_TEMPERATURE: float = Field(default=0.2)
    EMBEDDING_MAX_RETRIES: int = Field(default=3)
    EMBEDDING_RETRY_DELAY: float = Field(default=1.0)


class MemorySettings(CustomSettings):
    """Configuration for conversational memory retrieval.

    Set via env vars:
    - MEMORY_BACKEND (postgres | memory)
    - MEMORY_RECENT_LIMIT
    - MEMORY_SIMILAR_LIMIT
    - MEMORY_SIMILARITY_THRESHOLD (0 disables the distance cutoff)
    - EMBEDDING_DIMENSION (must match the width of message.embedding created
      by the alembic migration, or every insert fails on Postgres)
    """

    MEMORY_BACKEND: Literal["postgres", "memory"] = Field(default="postgres")
    MEMORY_RECENT_LIMIT: int = Field(default=20, ge=0)
    MEMORY_SIMILAR_LIMIT: int = Field(default=5, ge=0)
    MEMORY_SIMILARITY_THRESHOLD: float = Field(default=0.7, ge=0.0)
    EMBEDDING_DIMENSION: int = Field(default=1536, gt=0)


class Settings(BaseModel):
    APP: AppSettings = Field(default_factory=AppSettings)
    DATABASE: PgDbSettings = Field(default_factory=PgDbSettings)
    OPENAI: OpenAISettings = Field(default_factory=OpenAISettings)
    MEMORY: MemorySettings = Field(default_factory=MemorySettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()


SETTINGS = get_settings()
