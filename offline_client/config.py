import logging

import structlog
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    INSTANCE_URL: str = "http://localhost:8000"
    OFFLINE_ROOT: str = "./offline_data"
    STORE_BACKEND: str = "filesystem"  # filesystem | redis
    REDIS_URL: str = "redis://localhost:6379/4"
    HTTP_TIMEOUT: float = 30.0
    PROBE_TIMEOUT: float = 3.0
    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "OFFLINE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = ClientSettings()


def configure_logging(level: str | None = None) -> None:
    """Тот же формат логов, что и у сервиса: JSON с ISO-временем."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
