import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import BookmarkORM, ContentJobORM, EnrollmentProgressORM, PlaybackProgressORM
from ..application.use_cases.chunked_upload import IContentJobRepository
from ..domain.entities import ContentJobRecord, UploadSession, UploadStatus


def to_domain(row: ContentJobORM) -> ContentJobRecord:
    return ContentJobRecord(
        id=row.id,
        user_id=row.user_id,
        course_id=row.course_id,
        file_name=row.file_name,
        file_size=row.file_size,
        content_type=row.content_type,
        status=row.status,
        file_id=row.file_id,
        storage_name=row.storage_name,
        sha256=row.sha256,
        error=row.error,
        validated=row.validated_at is not None,
        created_at=row.created_at,
    )


class ContentJobRepository(IContentJobRepository):
    def __init__(self, db: Session): self.db = db

    def create(self, session: UploadSession, content_type: str) -> ContentJobRecord:
        row = ContentJobORM(
            id=session.id,
            user_id=session.user_id,
            course_id=session.course_id,
            file_name=session.file_name,
            file_size=session.file_size,
            content_type=content_type,
            status=UploadStatus.PROCESSING.value,
        )
        self.db.add(row); self.db.commit(); self.db.refresh(row)
        return to_domain(row)

    def get(self, job_id: str) -> ContentJobRecord | None:
        row = self.db.get(ContentJobORM, job_id)
        return to_domain(row) if row else None

    def get_by_file_id(self, file_id: str) -> ContentJobRecord | None:
        row = self.db.execute(
            select(ContentJobORM).where(ContentJobORM.file_id == file_id)
        ).scalar_one_or_none()
        return to_domain(row) if row else None

    def mark_validated(self, job_id: str) -> None:
        row = self._require(job_id)
        row.validated_at = datetime.now(timezone.utc)
        self.db.commit()

    def mark_completed(self, job_id: str, file_id: str, storage_name: str, sha256: str) -> ContentJobRecord:
        row = self._require(job_id)
        row.status = UploadStatus.COMPLETED.value
        row.file_id = file_id
        row.storage_name = storage_name
        row.sha256 = sha256
        row.completed_at = datetime.now(timezone.utc)
        self.db.commit(); self.db.refresh(row)
        return to_domain(row)

    def mark_failed(self, job_id: str, error: str) -> ContentJobRecord:
        row = self._require(job_id)
        row.status = UploadStatus.FAILED.value
        row.error = error
        self.db.commit(); self.db.refresh(row)
        return to_domain(row)

    def _require(self, job_id: str) -> ContentJobORM:
        row = self.db.get(ContentJobORM, job_id)
        if row is None:
            raise LookupError(f"content job {job_id} not found")
        return row


class EnrollmentProgressRepository:
    def __init__(self, db: Session): self.db = db

    def upsert(self, user_id: str, course_id: str, lesson_id: str, completed: bool | None,
               last_position: float | None = None, total_duration: float | None = None) -> EnrollmentProgressORM:
        # Повторная отправка перезаписывает запись урока (идемпотентный PATCH)
        now = datetime.now(timezone.utc)
        row = self.db.execute(
            select(EnrollmentProgressORM).where(
                EnrollmentProgressORM.user_id == user_id,
                EnrollmentProgressORM.lesson_id == lesson_id,
            )
        ).scalar_one_or_none()
        if row is None:
            row = EnrollmentProgressORM(user_id=user_id, lesson_id=lesson_id, completed=False)
            self.db.add(row)
        row.course_id = course_id
        if completed is not None:
            if completed and not row.completed:
                row.completed_at = now
            elif not completed:
                row.completed_at = None
            row.completed = completed
        if last_position is not None:
            row.last_position = last_position
        if total_duration is not None:
            row.total_duration = total_duration
        row.updated_at = now
        self.db.commit(); self.db.refresh(row)
        return row

    def list_for_course(self, user_id: str, course_id: str) -> list[EnrollmentProgressORM]:
        q = (select(EnrollmentProgressORM)
             .where(EnrollmentProgressORM.user_id == user_id,
                    EnrollmentProgressORM.course_id == course_id)
             .order_by(EnrollmentProgressORM.updated_at))
        return list(self.db.execute(q).scalars().all())


def percent_complete(current_time: float, duration: float) -> float:
    if duration <= 0:
        return 0.0
    return round(min(current_time / duration, 1.0) * 100, 1)


class PlaybackProgressRepository:
    def __init__(self, db: Session): self.db = db

    def get(self, user_id: str, content_id: str) -> PlaybackProgressORM | None:
        return self.db.execute(
            select(PlaybackProgressORM).where(
                PlaybackProgressORM.user_id == user_id,
                PlaybackProgressORM.content_id == content_id,
            )
        ).scalar_one_or_none()

    def upsert(self, user_id: str, content_id: str, current_time: float, duration: float) -> PlaybackProgressORM:
        row = self.get(user_id, content_id)
        if row is None:
            row = PlaybackProgressORM(user_id=user_id, content_id=content_id)
            self.db.add(row)
        row.current_time = current_time
        row.duration = duration
        row.percent_complete = percent_complete(current_time, duration)
        row.updated_at = datetime.now(timezone.utc)
        self.db.commit(); self.db.refresh(row)
        return row


class BookmarkRepository:
    def __init__(self, db: Session): self.db = db

    def create(self, user_id: str, content_id: str, time: float, note: str | None = None) -> BookmarkORM:
        row = BookmarkORM(
            id=f"bookmark_{uuid.uuid4().hex}",
            user_id=user_id,
            content_id=content_id,
            time=time,
            note=note,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(row); self.db.commit(); self.db.refresh(row)
        return row

    def list_for_content(self, user_id: str, content_id: str) -> list[BookmarkORM]:
        q = (select(BookmarkORM)
             .where(BookmarkORM.user_id == user_id, BookmarkORM.content_id == content_id)
             .order_by(BookmarkORM.time, BookmarkORM.created_at))
        return list(self.db.execute(q).scalars().all())
