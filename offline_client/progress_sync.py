import threading
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from .api import ApiClient
from .models import CourseProgress, ProgressRecord, merge_course_progress, now_ms
from .network import ConnectivityProbe
from .storage import OfflineStore, course_lesson_ids

logger = structlog.get_logger()


@dataclass(frozen=True)
class LessonCompletion:
    record: ProgressRecord
    synced: bool
    data: dict | None = None


@dataclass(frozen=True)
class SyncReport:
    total: int
    synced: int
    failed: int


class ProgressReconciler:
    """Прогресс пишется локально сразу, на сервер отправляется по возможности.

    Неотправленные записи досылает sync_offline_progress; одновременно
    выполняется не больше одного прохода синхронизации.
    """

    def __init__(self, api: ApiClient, store: OfflineStore, probe: ConnectivityProbe,
                 clock: Callable[[], int] = now_ms):
        self.api = api
        self.store = store
        self.probe = probe
        self._clock = clock
        self._sync_lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def mark_lesson_complete(self, course_id: str, lesson_id: str) -> LessonCompletion:
        record = self.store.save_progress(lesson_id, course_id, progress=100, completed_at=self._clock())
        self._fold_into_course_progress(course_id, lesson_id, record.completed_at)

        if not self.probe.is_online():
            logger.info("progress_stored_offline", course_id=course_id, lesson_id=lesson_id)
            return LessonCompletion(record=record, synced=False)

        data = self._push(record)
        if data is None:
            return LessonCompletion(record=record, synced=False)
        self.store.mark_progress_synced(lesson_id)
        return LessonCompletion(record=record.model_copy(update={"synced": True}), synced=True, data=data)

    def sync_offline_progress(self) -> SyncReport | None:
        # Вызов во время идущей синхронизации отбрасывается, а не ставится в очередь
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("progress_sync_skipped", reason="already_running")
            return None
        try:
            if not self.probe.is_online():
                return None
            unsynced = self.store.get_unsynced_progress()
            if not unsynced:
                return SyncReport(total=0, synced=0, failed=0)

            logger.info("progress_sync_started", records=len(unsynced))
            synced = 0
            for record in unsynced:
                if self._push(record) is not None:
                    self.store.mark_progress_synced(record.lesson_id)
                    synced += 1
            report = SyncReport(total=len(unsynced), synced=synced, failed=len(unsynced) - synced)
            logger.info("progress_synced", total=report.total, synced=report.synced, failed=report.failed)
            return report
        finally:
            self._sync_lock.release()

    def refresh_course_progress(self, course_id: str) -> CourseProgress | None:
        """Сводит локальный и серверный прогресс курса по lastUpdated."""
        local = self.store.get_course_progress(course_id)
        if not self.probe.is_online():
            return local
        try:
            response = self.api.get("/enrollments/progress", params={"courseId": course_id})
        except httpx.HTTPError as e:
            logger.warning("course_progress_fetch_failed", course_id=course_id, error=str(e))
            return local
        if not response.is_success:
            logger.warning("course_progress_fetch_failed", course_id=course_id, status_code=response.status_code)
            return local

        body = response.json()
        completed = list(body.get("completedLessons") or [])
        remote = CourseProgress(
            course_id=course_id,
            progress=self._percent(course_id, completed),
            completed_lessons=completed,
            last_updated=int(body.get("lastUpdated") or 0),
        )
        winner = merge_course_progress(local, remote)
        if winner is remote:
            self.store.save_course_progress(remote)
        return winner

    def _push(self, record: ProgressRecord) -> dict | None:
        """PATCH одной записи. Тело ответа при 2xx, иначе None."""
        payload = {"courseId": record.course_id, "lessonId": record.lesson_id, "completed": True}
        try:
            response = self.api.patch("/enrollments/progress", json=payload)
        except httpx.HTTPError as e:
            logger.warning("progress_sync_failed", lesson_id=record.lesson_id, error=str(e))
            return None
        if not response.is_success:
            logger.warning("progress_sync_failed", lesson_id=record.lesson_id,
                           status_code=response.status_code, body=response.text[:500])
            return None
        try:
            return response.json()
        except ValueError:
            return {}

    def _fold_into_course_progress(self, course_id: str, lesson_id: str, timestamp: int) -> None:
        current = self.store.get_course_progress(course_id)
        completed = list(current.completed_lessons) if current else []
        if lesson_id not in completed:
            completed.append(lesson_id)
        self.store.save_course_progress(CourseProgress(
            course_id=course_id,
            progress=self._percent(course_id, completed),
            completed_lessons=completed,
            last_updated=timestamp,
        ))

    def _percent(self, course_id: str, completed: list[str]) -> float | None:
        # Без офлайн-снимка курса общее число уроков неизвестно
        course = self.store.get_course(course_id)
        if course is None:
            return None
        lesson_ids = set(course_lesson_ids(course))
        if not lesson_ids:
            return None
        return round(len(lesson_ids.intersection(completed)) / len(lesson_ids) * 100, 1)
