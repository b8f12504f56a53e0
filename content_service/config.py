from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./content.db"
    REDIS_URL: str = "redis://localhost:6379/3"
    SECRET_KEY: str = "dev-secret-content"
    JWT_ALGORITHM: str = "HS256"
    LOG_LEVEL: str = "INFO"
    CACHE_TTL: int = 300  # 5 minutes

    # Загрузка файлов по частям
    STORAGE_PATH: str = "./storage"
    CHUNK_SIZE: int = 1024 * 1024  # 1 MiB
    MAX_UPLOAD_MB: int = 2048
    UPLOAD_SESSION_BACKEND: str = "memory"  # memory | redis
    UPLOAD_SESSION_TTL: int = 24 * 3600
    PROCESSING_DELAY_SECONDS: float = 2.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
