class OfflineClientError(Exception):
    """Базовая ошибка клиента офлайн-контента"""


class DownloadError(OfflineClientError):
    def __init__(self, file_id: str, reason: str):
        super().__init__(f"Download of {file_id} failed: {reason}")
        self.file_id = file_id
        self.reason = reason


class CourseDownloadError(OfflineClientError):
    def __init__(self, course_id: str, reason: str):
        super().__init__(f"Course {course_id} download failed: {reason}")
        self.course_id = course_id
        self.reason = reason
