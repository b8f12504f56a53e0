import time

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ProgressRecord(CamelModel):
    """Локальная отметка о прохождении урока (ключ progress_<lessonId>)"""
    lesson_id: str
    course_id: str
    completed_at: int = Field(default_factory=now_ms)
    synced: bool = False
    progress: float | None = None


class CourseProgress(CamelModel):
    course_id: str
    progress: float | None = None
    completed_lessons: list[str] = Field(default_factory=list)
    last_updated: int = Field(default_factory=now_ms)


def merge_course_progress(local: CourseProgress | None, remote: CourseProgress | None) -> CourseProgress | None:
    """Last-write-wins по lastUpdated; при равенстве остаётся локальная запись."""
    if local is None:
        return remote
    if remote is None:
        return local
    return remote if remote.last_updated > local.last_updated else local
