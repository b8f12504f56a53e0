import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import quote

import redis
import structlog
from pydantic import BaseModel, ValidationError

from .config import ClientSettings, settings as default_settings
from .models import CourseProgress, ProgressRecord

logger = structlog.get_logger()

COURSES = "courses"
LESSONS = "lessons"
QUIZZES = "quizzes"
PROGRESS = "progress"
ENROLLMENTS = "enrollments"


def course_lesson_ids(course: dict) -> Iterator[str]:
    for module in course.get("modules") or []:
        for lesson in module.get("lessons") or []:
            if lesson.get("id") is not None:
                yield str(lesson["id"])


class OfflineStore:
    """Офлайн-копии курсов, уроков и тестов плюс локальный прогресс.

    Наследники реализуют только четыре примитива (_put/_get/_all/_delete)
    над своим носителем; всё остальное общее.
    """

    def _put(self, kind: str, key: str, doc: dict) -> None:
        raise NotImplementedError

    def _get(self, kind: str, key: str) -> dict | None:
        raise NotImplementedError

    def _all(self, kind: str) -> list[dict]:
        raise NotImplementedError

    def _delete(self, kind: str, key: str) -> None:
        raise NotImplementedError

    # --- снимки контента

    def save_course(self, course: dict) -> None:
        self._put(COURSES, str(course["id"]), course)

    def get_course(self, course_id: str) -> dict | None:
        return self._get(COURSES, str(course_id))

    def get_all_courses(self) -> list[dict]:
        return self._all(COURSES)

    def is_course_offline(self, course_id: str) -> bool:
        return self.get_course(course_id) is not None

    def remove_course(self, course_id: str) -> bool:
        """Удаляет снимок курса и снимки его уроков. Медиафайлы не трогает."""
        course = self.get_course(course_id)
        if course is None:
            return False
        for lesson_id in course_lesson_ids(course):
            self._delete(LESSONS, lesson_id)
        self._delete(COURSES, str(course_id))
        logger.info("offline_course_removed", course_id=course_id)
        return True

    def save_lesson(self, lesson: dict) -> None:
        self._put(LESSONS, str(lesson["id"]), lesson)

    def get_lesson(self, lesson_id: str) -> dict | None:
        return self._get(LESSONS, str(lesson_id))

    def save_quiz(self, quiz: dict) -> None:
        self._put(QUIZZES, str(quiz["id"]), quiz)

    def get_quiz(self, quiz_id: str) -> dict | None:
        return self._get(QUIZZES, str(quiz_id))

    # --- прогресс

    def save_progress(self, lesson_id: str, course_id: str, progress: float | None = None,
                      completed_at: int | None = None) -> ProgressRecord:
        fields: dict[str, Any] = {"lesson_id": lesson_id, "course_id": course_id, "progress": progress}
        if completed_at is not None:
            fields["completed_at"] = completed_at
        record = ProgressRecord(**fields)
        self._put(PROGRESS, lesson_id, record.model_dump(by_alias=True))
        return record

    def get_progress(self, lesson_id: str) -> ProgressRecord | None:
        doc = self._get(PROGRESS, lesson_id)
        return self._validate(ProgressRecord, doc, PROGRESS) if doc else None

    def get_unsynced_progress(self) -> list[ProgressRecord]:
        """Записи, не отправленные на сервер. Испорченные пропускаются."""
        records = [self._validate(ProgressRecord, doc, PROGRESS) for doc in self._all(PROGRESS)]
        return [r for r in records if r is not None and not r.synced]

    def mark_progress_synced(self, lesson_id: str) -> bool:
        record = self.get_progress(lesson_id)
        if record is None:
            return False
        record.synced = True
        self._put(PROGRESS, lesson_id, record.model_dump(by_alias=True))
        return True

    def save_course_progress(self, record: CourseProgress) -> None:
        self._put(ENROLLMENTS, record.course_id, record.model_dump(by_alias=True))

    def get_course_progress(self, course_id: str) -> CourseProgress | None:
        doc = self._get(ENROLLMENTS, course_id)
        return self._validate(CourseProgress, doc, ENROLLMENTS) if doc else None

    @staticmethod
    def _validate(model: type[BaseModel], doc: dict, kind: str):
        try:
            return model.model_validate(doc)
        except ValidationError as e:
            logger.error("offline_record_invalid", kind=kind, errors=e.error_count())
            return None


class FileSystemStore(OfflineStore):
    """<root>/offline_content/<type>/<id>.json"""

    def __init__(self, root: str | Path):
        self.base = Path(root) / "offline_content"

    def _dir(self, kind: str) -> Path:
        path = self.base / kind
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _path(self, kind: str, key: str) -> Path:
        return self._dir(kind) / f"{quote(key, safe='')}.json"

    def _put(self, kind: str, key: str, doc: dict) -> None:
        target = self._path(kind, key)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read(self, path: Path) -> dict | None:
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            # JSONDecodeError и UnicodeDecodeError
            logger.error("offline_record_corrupt", path=str(path))
            return None
        if not isinstance(doc, dict):
            logger.error("offline_record_corrupt", path=str(path))
            return None
        return doc

    def _get(self, kind: str, key: str) -> dict | None:
        path = self._path(kind, key)
        if not path.is_file():
            return None
        return self._read(path)

    def _all(self, kind: str) -> list[dict]:
        docs = []
        for path in sorted(self._dir(kind).glob("*.json")):
            doc = self._read(path)
            if doc is not None:
                docs.append(doc)
        return docs

    def _delete(self, kind: str, key: str) -> None:
        self._path(kind, key).unlink(missing_ok=True)


class KeyValueStore(OfflineStore):
    """Ключи @offline:<type>:<id>, прогресс в progress_<lessonId> и enrollment_<courseId>.

    Клиент: redis.Redis или любой объект с get/set/delete/scan_iter.
    """

    _PREFIXES = {
        PROGRESS: "progress_",
        ENROLLMENTS: "enrollment_",
    }

    def __init__(self, client: redis.Redis):
        self.client = client

    def _prefix(self, kind: str) -> str:
        return self._PREFIXES.get(kind, f"@offline:{kind}:")

    def _put(self, kind: str, key: str, doc: dict) -> None:
        self.client.set(self._prefix(kind) + key, json.dumps(doc, ensure_ascii=False))

    def _load(self, key: str, raw) -> dict | None:
        try:
            doc = json.loads(raw)
        except ValueError:
            logger.error("offline_record_corrupt", key=key)
            return None
        if not isinstance(doc, dict):
            logger.error("offline_record_corrupt", key=key)
            return None
        return doc

    def _get(self, kind: str, key: str) -> dict | None:
        full_key = self._prefix(kind) + key
        raw = self.client.get(full_key)
        return self._load(full_key, raw) if raw is not None else None

    def _all(self, kind: str) -> list[dict]:
        docs = []
        for key in sorted(self.client.scan_iter(match=self._prefix(kind) + "*")):
            raw = self.client.get(key)
            if raw is None:
                continue
            doc = self._load(key, raw)
            if doc is not None:
                docs.append(doc)
        return docs

    def _delete(self, kind: str, key: str) -> None:
        self.client.delete(self._prefix(kind) + key)


def create_store(config: ClientSettings = default_settings) -> OfflineStore:
    if config.STORE_BACKEND == "redis":
        return KeyValueStore(redis.from_url(config.REDIS_URL, decode_responses=True))
    return FileSystemStore(config.OFFLINE_ROOT)
