from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...application.use_cases.chunked_upload import ChunkedUploadCoordinator, IUploadSessionRepository
from ...config import settings
from ...infrastructure.cache import get_binary_redis
from ...infrastructure.db import get_db
from ...infrastructure.jobs import build_coordinator
from ...infrastructure.sessions import InMemoryUploadSessionRepository, RedisUploadSessionRepository
from ...infrastructure.storage import LocalArtifactStore


@lru_cache
def get_session_repository() -> IUploadSessionRepository:
    """Одно хранилище сессий на процесс."""
    if settings.UPLOAD_SESSION_BACKEND == "redis":
        return RedisUploadSessionRepository(get_binary_redis(), settings.UPLOAD_SESSION_TTL)
    return InMemoryUploadSessionRepository(ttl_seconds=settings.UPLOAD_SESSION_TTL)


def get_artifact_store() -> LocalArtifactStore:
    return LocalArtifactStore(base_path=settings.STORAGE_PATH)


def get_coordinator(
    db: Session = Depends(get_db),
    sessions: IUploadSessionRepository = Depends(get_session_repository),
    artifacts: LocalArtifactStore = Depends(get_artifact_store),
) -> ChunkedUploadCoordinator:
    return build_coordinator(db, sessions, artifacts)
