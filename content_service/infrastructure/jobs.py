import time
from typing import Callable

import structlog
from sqlalchemy.orm import Session

from ..application.use_cases.chunked_upload import (
    ChunkedUploadCoordinator,
    IArtifactStore,
    IUploadSessionRepository,
)
from ..config import settings
from .metrics import upload_processing_seconds, uploads_completed_total
from .repositories import ContentJobRepository

logger = structlog.get_logger()


def build_coordinator(db: Session, sessions: IUploadSessionRepository,
                      artifacts: IArtifactStore) -> ChunkedUploadCoordinator:
    return ChunkedUploadCoordinator(
        sessions=sessions,
        jobs=ContentJobRepository(db),
        artifacts=artifacts,
        chunk_size=settings.CHUNK_SIZE,
        max_file_size=settings.MAX_UPLOAD_MB * 1024 * 1024,
        processing_delay=settings.PROCESSING_DELAY_SECONDS,
    )


def run_processing_job(upload_id: str, session_factory: Callable[[], Session],
                       sessions: IUploadSessionRepository, artifacts: IArtifactStore) -> None:
    """Фоновая задача: выполняется после отправки ответа на complete."""
    start = time.perf_counter()
    db = session_factory()
    try:
        job = build_coordinator(db, sessions, artifacts).process(upload_id)
    finally:
        db.close()

    if job is None:
        return
    duration = time.perf_counter() - start
    upload_processing_seconds.observe(duration)
    uploads_completed_total.labels(status=job.status).inc()
    logger.info("processing_job_finished", upload_id=upload_id, status=job.status,
                duration_ms=round(duration * 1000, 2))
