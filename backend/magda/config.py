from typing import Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Magda Records"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Secure store
    SECURE_STORE_BACKEND: Literal["memory", "file", "redis"] = "file"
    SECURE_STORE_PATH: str = "data/secure_store.json"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Encryption ("xor-legacy" reads blobs written by the mobile app)
    CIPHER_SCHEME: Literal["aes-gcm", "xor-legacy"] = "aes-gcm"

    # OpenAI-compatible assistant
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_URL: str = "https://api.openai.com/v1/chat/completions"
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    AI_ENRICHMENT_TIMEOUT_SECONDS: float = 15.0

    # Records
    RECENT_RECORDS_LIMIT: int = 5

    @field_validator("OPENAI_API_KEY", mode="before")
    @classmethod
    def parse_openai_api_key(cls, v):
        if v is None or str(v).strip() == "":
            return None
        return str(v).strip()

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
