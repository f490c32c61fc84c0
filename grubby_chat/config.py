import os
from functools import lru_cache
from typing import Any, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):

    mongo_url: str = Field(default="mongodb://localhost:27017")
    mongo_db_name: str = Field(default="grubby_chat")

    # unset -> in-process bus, single worker only
    redis_url: Optional[str] = Field(default=None)

    jwt_secret_key: str = Field(default="change-me-in-production-0123456789abcdef")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60)

    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Settings":
        raw: dict[str, Any] = {}
        env_map = {
            "mongo_url": os.getenv("MONGO_URL"),
            "mongo_db_name": os.getenv("MONGO_DB_NAME"),
            "redis_url": os.getenv("REDIS_URL"),
            "jwt_secret_key": os.getenv("JWT_SECRET_KEY"),
            "jwt_algorithm": os.getenv("JWT_ALGORITHM"),
            "access_token_expire_minutes": os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        for k, v in env_map.items():
            if v is None or v == "":
                continue
            raw[k] = v
        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
