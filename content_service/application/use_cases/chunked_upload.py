import hashlib
import math
import mimetypes
import time
import uuid
from pathlib import PurePath
from typing import Callable, Iterable, Iterator

import structlog

from ...domain.entities import (
    ChunkReceipt,
    CLOSED_STATUSES,
    ContentJobRecord,
    ContentStatus,
    ProcessingStep,
    UploadSession,
    UploadStatus,
)
from ...domain.errors import FileTooLarge, InvalidChunk, UploadNotFound, UploadNotReady

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024


class IUploadSessionRepository:
    def create(self, session: UploadSession) -> None: ...
    def get(self, upload_id: str) -> UploadSession | None: ...
    def put_chunk(self, upload_id: str, index: int, data: bytes) -> int: ...
    def get_chunk(self, upload_id: str, index: int) -> bytes | None: ...
    def chunk_indices(self, upload_id: str) -> set[int]: ...
    def update_status(self, upload_id: str, status: UploadStatus,
                      expected: UploadStatus | None = None) -> bool: ...
    def drop_chunks(self, upload_id: str) -> None: ...
    def delete(self, upload_id: str) -> None: ...

    def iter_chunks(self, upload_id: str, count: int) -> Iterator[bytes]:
        for index in range(count):
            chunk = self.get_chunk(upload_id, index)
            if chunk is None:
                raise KeyError(index)
            yield chunk


class IContentJobRepository:
    def create(self, session: UploadSession, content_type: str) -> ContentJobRecord: ...
    def get(self, job_id: str) -> ContentJobRecord | None: ...
    def get_by_file_id(self, file_id: str) -> ContentJobRecord | None: ...
    def mark_validated(self, job_id: str) -> None: ...
    def mark_completed(self, job_id: str, file_id: str, storage_name: str, sha256: str) -> ContentJobRecord: ...
    def mark_failed(self, job_id: str, error: str) -> ContentJobRecord: ...


class IArtifactStore:
    def write(self, name: str, chunks: Iterable[bytes]) -> tuple[int, str]: ...
    def delete(self, name: str) -> None: ...


class ChunkedUploadCoordinator:
    """Принимает файл частями и собирает его в один артефакт.

    Сессии и части живут в репозитории сессий, итог обработки фиксируется
    в долговременной записи задачи, которую опрашивает get_content_status.
    """

    def __init__(
        self,
        sessions: IUploadSessionRepository,
        jobs: IContentJobRepository,
        artifacts: IArtifactStore,
        chunk_size: int = CHUNK_SIZE,
        max_file_size: int | None = None,
        processing_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sessions = sessions
        self.jobs = jobs
        self.artifacts = artifacts
        self.chunk_size = chunk_size
        self.max_file_size = max_file_size
        self.processing_delay = processing_delay
        self._sleep = sleep

    # --- загрузка

    def initiate(self, file_name: str, file_size: int, course_id: str, user_id: str) -> UploadSession:
        if file_size <= 0:
            raise ValueError("File size must be positive")
        if self.max_file_size is not None and file_size > self.max_file_size:
            raise FileTooLarge(file_size, self.max_file_size)

        session = UploadSession(
            id=f"upload_{uuid.uuid4().hex}",
            file_name=file_name,
            file_size=file_size,
            course_id=course_id,
            user_id=user_id,
            chunk_size=self.chunk_size,
            total_chunks=math.ceil(file_size / self.chunk_size),
        )
        self.sessions.create(session)
        logger.info("upload_initiated", upload_id=session.id, file_name=file_name,
                    file_size=file_size, total_chunks=session.total_chunks)
        return session

    def upload_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes, user_id: str) -> ChunkReceipt:
        session = self._get_owned(upload_id, user_id)
        if session.status in CLOSED_STATUSES:
            raise UploadNotReady(upload_id, session.status.value, "Upload no longer accepts chunks")
        if not 0 <= chunk_index < session.total_chunks:
            raise InvalidChunk(upload_id, chunk_index, "Chunk index out of range")
        expected = session.expected_chunk_length(chunk_index)
        if len(chunk_data) != expected:
            raise InvalidChunk(upload_id, chunk_index,
                               f"Chunk must be {expected} bytes, got {len(chunk_data)}")

        # Повторная отправка той же части перезаписывает её
        previous = self.sessions.get_chunk(upload_id, chunk_index)
        if previous is not None and previous != chunk_data:
            logger.warning(
                "chunk_overwritten",
                upload_id=upload_id,
                chunk_index=chunk_index,
                previous_sha256=hashlib.sha256(previous).hexdigest(),
                sha256=hashlib.sha256(chunk_data).hexdigest(),
            )
        count = self.sessions.put_chunk(upload_id, chunk_index, chunk_data)
        session.apply_chunk_count(count)
        logger.debug("chunk_received", upload_id=upload_id, chunk_index=chunk_index,
                     uploaded_chunks=count, total_chunks=session.total_chunks)

        return ChunkReceipt(
            upload_id=upload_id,
            chunk_index=chunk_index,
            uploaded_chunks=session.uploaded_chunks,
            total_chunks=session.total_chunks,
            progress=session.progress,
            status=session.status,
        )

    def complete_upload(self, upload_id: str, user_id: str) -> ContentJobRecord:
        session = self._get_owned(upload_id, user_id)
        if session.status != UploadStatus.READY:
            raise UploadNotReady(upload_id, session.status.value)
        if not self.sessions.update_status(upload_id, UploadStatus.PROCESSING, expected=UploadStatus.READY):
            current = self.sessions.get(upload_id)
            raise UploadNotReady(upload_id, current.status.value if current else "not_found")

        content_type = mimetypes.guess_type(session.file_name)[0] or "application/octet-stream"
        try:
            job = self.jobs.create(session, content_type)
        except Exception:
            # Без записи задачи обработка не начнётся: возвращаем сессию в ready для повтора
            logger.exception("content_job_create_failed", upload_id=upload_id)
            self.sessions.update_status(upload_id, UploadStatus.READY, expected=UploadStatus.PROCESSING)
            raise
        logger.info("upload_processing_started", upload_id=upload_id)
        return job

    # --- обработка

    def process(self, upload_id: str) -> ContentJobRecord | None:
        """Тело фоновой задачи: проверка полноты, сборка файла, фиксация результата."""
        session = self.sessions.get(upload_id)
        if session is None or session.status != UploadStatus.PROCESSING:
            logger.warning("processing_skipped", upload_id=upload_id,
                           status=session.status.value if session else None)
            return None

        if self.processing_delay:
            self._sleep(self.processing_delay)

        present = self.sessions.chunk_indices(upload_id)
        missing = [i for i in range(session.total_chunks) if i not in present]
        if missing:
            return self._fail(upload_id, f"Missing chunks: {missing[:10]}")
        self.jobs.mark_validated(upload_id)

        file_id = f"file_{uuid.uuid4().hex}"
        storage_name = file_id + PurePath(session.file_name).suffix.lower()
        try:
            size, digest = self.artifacts.write(
                storage_name, self.sessions.iter_chunks(upload_id, session.total_chunks)
            )
        except (OSError, KeyError) as e:
            logger.exception("artifact_write_failed", upload_id=upload_id)
            self.artifacts.delete(storage_name)
            return self._fail(upload_id, f"Assembly failed: {e!r}")

        if size != session.file_size:
            self.artifacts.delete(storage_name)
            return self._fail(upload_id, f"Assembled size {size} does not match declared {session.file_size}")

        job = self.jobs.mark_completed(upload_id, file_id, storage_name, digest)
        self.sessions.update_status(upload_id, UploadStatus.COMPLETED)
        self.sessions.drop_chunks(upload_id)
        logger.info("upload_completed", upload_id=upload_id, file_id=file_id, sha256=digest)
        return job

    def get_content_status(self, content_id: str) -> ContentStatus:
        job = self.jobs.get(content_id)
        session = self.sessions.get(content_id)
        if job is None and session is None:
            return ContentStatus(id=content_id, status="not_found", processing_steps=[])

        status = job.status if job else session.status.value
        return ContentStatus(
            id=content_id,
            status=status,
            processing_steps=self._steps(session, job),
            file_id=job.file_id if job else None,
            error=job.error if job else None,
        )

    # --- helpers

    def _get_owned(self, upload_id: str, user_id: str) -> UploadSession:
        session = self.sessions.get(upload_id)
        if session is None or session.user_id != user_id:
            raise UploadNotFound(upload_id)
        return session

    def _fail(self, upload_id: str, error: str) -> ContentJobRecord:
        logger.error("upload_failed", upload_id=upload_id, error=error)
        job = self.jobs.mark_failed(upload_id, error)
        self.sessions.update_status(upload_id, UploadStatus.FAILED)
        return job

    @staticmethod
    def _steps(session: UploadSession | None, job: ContentJobRecord | None) -> list[ProcessingStep]:
        if job is not None or session.status == UploadStatus.READY:
            upload = ProcessingStep("upload", "completed", 100)
        else:
            upload = ProcessingStep(
                "upload",
                "processing" if session.uploaded_chunks else "pending",
                int(session.progress),
            )

        if job is None:
            validation = ProcessingStep("validation", "pending", 0)
            processing = ProcessingStep("processing", "pending", 0)
        elif job.status == UploadStatus.COMPLETED.value:
            validation = ProcessingStep("validation", "completed", 100)
            processing = ProcessingStep("processing", "completed", 100)
        elif job.status == UploadStatus.FAILED.value:
            if job.validated:
                validation = ProcessingStep("validation", "completed", 100)
                processing = ProcessingStep("processing", "failed", 0)
            else:
                validation = ProcessingStep("validation", "failed", 0)
                processing = ProcessingStep("processing", "pending", 0)
        elif job.validated:
            validation = ProcessingStep("validation", "completed", 100)
            processing = ProcessingStep("processing", "processing", 50)
        else:
            validation = ProcessingStep("validation", "processing", 50)
            processing = ProcessingStep("processing", "pending", 0)
        return [upload, validation, processing]
