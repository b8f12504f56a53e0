from typing import Callable

import httpx
import structlog

from .api import ApiClient
from .errors import CourseDownloadError, DownloadError
from .media import MediaDownloader, extension_for
from .storage import OfflineStore

logger = structlog.get_logger()


def lesson_media(lesson: dict) -> list[tuple[str, str]]:
    """Пары (fileId, расширение) для всех файлов урока."""
    content = lesson.get("content_data") or {}
    refs = []
    # Старый формат: один видеофайл на урок
    if lesson.get("content_type") == "video" and content.get("fileId"):
        refs.append((content["fileId"], "mp4"))
    blocks = content.get("blocks")
    if isinstance(blocks, list):
        for block in blocks:
            if block.get("fileId"):
                refs.append((block["fileId"], extension_for(block.get("type"))))
    return refs


class CourseDownloader:
    """Скачивает курс целиком: снимок курса, уроки, медиафайлы.

    Прогресс линейный по 1 + Σ уроков шагам и не учитывает размер файлов.
    Ошибки отдельных уроков и файлов пишутся в лог и не прерывают загрузку.
    """

    def __init__(self, api: ApiClient, store: OfflineStore, media: MediaDownloader):
        self.api = api
        self.store = store
        self.media = media
        self.is_downloading = False
        self.download_progress = 0.0

    def _report(self, done: int, total: int, on_progress: Callable[[float], None] | None) -> None:
        self.download_progress = done / total * 100
        if on_progress:
            on_progress(self.download_progress)

    def download_course(self, course_id: str, on_progress: Callable[[float], None] | None = None) -> dict:
        if not self.api.token:
            raise CourseDownloadError(course_id, "access token required")

        self.is_downloading = True
        self.download_progress = 0.0
        try:
            try:
                response = self.api.get(f"/courses/{course_id}")
            except httpx.HTTPError as e:
                raise CourseDownloadError(course_id, str(e)) from e
            if not response.is_success:
                raise CourseDownloadError(course_id, f"Failed to fetch course details (HTTP {response.status_code})")
            course = response.json()
            self.store.save_course(course)

            modules = course.get("modules") or []
            total = 1 + sum(len(m.get("lessons") or []) for m in modules)
            done = 1
            self._report(done, total, on_progress)

            for module in modules:
                for lesson in module.get("lessons") or []:
                    lesson_id = lesson.get("id")
                    if lesson_id is None:
                        logger.warning("lesson_without_id", course_id=course_id, module_id=module.get("id"))
                    else:
                        self._download_lesson(course_id, str(lesson_id))
                    done += 1
                    self._report(done, total, on_progress)

            logger.info("course_downloaded", course_id=course_id, lessons=total - 1)
            return course
        finally:
            self.is_downloading = False

    def _download_lesson(self, course_id: str, lesson_id: str) -> None:
        try:
            response = self.api.get(f"/courses/{course_id}/lessons/{lesson_id}")
        except httpx.HTTPError as e:
            logger.error("lesson_download_failed", course_id=course_id, lesson_id=lesson_id, error=str(e))
            return
        if not response.is_success:
            logger.error("lesson_download_failed", course_id=course_id, lesson_id=lesson_id,
                         status_code=response.status_code)
            return

        lesson = response.json()
        self.store.save_lesson(lesson)

        for file_id, extension in lesson_media(lesson):
            try:
                self.media.save_file_for_offline(file_id, self.api.token, extension=extension)
            except DownloadError as e:
                logger.error("lesson_file_download_failed", lesson_id=lesson_id, file_id=file_id, error=e.reason)

    def is_course_downloaded(self, course_id: str) -> bool:
        return self.store.is_course_offline(course_id)
