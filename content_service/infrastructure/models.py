# content_service/infrastructure/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Float, Integer, String, Text, TIMESTAMP, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentJobORM(Base):
    """Задача обработки загруженного файла. Ключ совпадает с upload id."""
    __tablename__ = "content_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    course_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="processing", index=True)
    file_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    storage_name: Mapped[str | None] = mapped_column(String(600), nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    validated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"ContentJobORM(id={self.id!r}, status={self.status!r}, file_id={self.file_id!r})"


class EnrollmentProgressORM(Base):
    __tablename__ = "enrollment_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)  # берём из JWT sub
    course_id: Mapped[str] = mapped_column(String(255), index=True)
    lesson_id: Mapped[str] = mapped_column(String(255), index=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    last_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_user_lesson"),)

    def __repr__(self) -> str:
        return f"EnrollmentProgressORM(user_id={self.user_id!r}, lesson_id={self.lesson_id!r})"


class PlaybackProgressORM(Base):
    """Позиция воспроизведения пользователя в файле контента"""
    __tablename__ = "playback_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    content_id: Mapped[str] = mapped_column(String(255), index=True)
    current_time: Mapped[float] = mapped_column("position_seconds", Float, nullable=False)
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    percent_complete: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    __table_args__ = (UniqueConstraint("user_id", "content_id", name="uq_user_content_playback"),)


class BookmarkORM(Base):
    __tablename__ = "bookmarks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    content_id: Mapped[str] = mapped_column(String(255), index=True)
    time: Mapped[float] = mapped_column(Float, nullable=False)  # секунды от начала
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"BookmarkORM(id={self.id!r}, content_id={self.content_id!r}, time={self.time!r})"
