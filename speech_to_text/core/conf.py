# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：conf.py
@Date    ：2025/07/02 10:12
"""
import os

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()  # 加载 .env 文件


class Settings(BaseModel):
    """Client settings, read from the environment (and `.env`)"""

    # Service
    STT_URL: str = "https://stream.watsonplatform.net/speech-to-text/api"
    STT_VERSION: str = "v1"
    STT_USERNAME: Optional[str] = None
    STT_PASSWORD: Optional[str] = None
    STT_TOKEN: Optional[str] = None

    # HTTP
    STT_TIMEOUT: float = 60.0
    STT_READ_TIMEOUT: float = 60.0
    STT_WRITE_TIMEOUT: float = 30.0
    STT_HTTP2: bool = False

    # WebSocket
    STT_WS_CONNECT_TIMEOUT: float = 10.0
    STT_WS_MAX_SIZE: int = 1_000_000_000

    # Log
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {name: os.environ[name] for name in cls.model_fields if name in os.environ}
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    """获取全局配置"""
    return Settings.from_env()


settings = get_settings()
