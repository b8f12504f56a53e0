class UploadError(Exception):
    """Базовая ошибка загрузки"""


class UploadNotFound(UploadError):
    def __init__(self, upload_id: str):
        super().__init__("Upload not found")
        self.upload_id = upload_id


class UploadNotReady(UploadError):
    """Операция недопустима в текущем состоянии сессии"""

    def __init__(self, upload_id: str, status: str, message: str = "Upload not ready for completion"):
        super().__init__(message)
        self.upload_id = upload_id
        self.status = status


class InvalidChunk(UploadError):
    def __init__(self, upload_id: str, chunk_index: int, reason: str):
        super().__init__(reason)
        self.upload_id = upload_id
        self.chunk_index = chunk_index


class FileTooLarge(UploadError):
    def __init__(self, file_size: int, limit: int):
        super().__init__(f"File too large (max {limit // (1024 * 1024)} MB)")
        self.file_size = file_size
        self.limit = limit
