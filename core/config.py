import logging
import os
from typing import Optional

import pydantic
from pydantic import BaseModel


class AppConfig(BaseModel):
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "logwatch"
    redis_url: Optional[str] = None
    nats_url: Optional[str] = None
    sms_gateway_url: str = "https://textbelt.com/text"
    sms_api_key: Optional[str] = None
    sms_timeout_seconds: float = 10.0
    aggregate_cache_ttl_seconds: int = 300
    max_cooldown_minutes: int = 60
    log_level: str = "INFO"

    @pydantic.field_validator("sms_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("SMS_TIMEOUT_SECONDS must be positive")
        return v

    @pydantic.field_validator("aggregate_cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError("AGGREGATE_CACHE_TTL_SECONDS must not be negative")
        return v

    @pydantic.field_validator("max_cooldown_minutes")
    @classmethod
    def validate_cooldown(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_COOLDOWN_MINUTES must be at least 1")
        return v

    @pydantic.field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            mongo_url=os.getenv("MONGO_URL", "mongodb://localhost:27017"),
            mongo_db=os.getenv("MONGO_DB", "logwatch"),
            redis_url=os.getenv("REDIS_URL") or None,
            nats_url=os.getenv("NATS_URL") or None,
            sms_gateway_url=os.getenv("SMS_GATEWAY_URL", "https://textbelt.com/text"),
            sms_api_key=os.getenv("TEXTBELT_API_KEY") or None,
            sms_timeout_seconds=float(os.getenv("SMS_TIMEOUT_SECONDS", "10.0")),
            aggregate_cache_ttl_seconds=int(
                os.getenv("AGGREGATE_CACHE_TTL_SECONDS", "300")
            ),
            max_cooldown_minutes=int(os.getenv("MAX_COOLDOWN_MINUTES", "60")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


__all__ = ["AppConfig"]
