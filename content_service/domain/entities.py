from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum


class UploadStatus(str, Enum):
    INITIATED = "initiated"
    UPLOADING = "uploading"
    READY = "ready"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# В этих состояниях сессия больше не принимает части
CLOSED_STATUSES = (UploadStatus.PROCESSING, UploadStatus.COMPLETED, UploadStatus.FAILED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadSession:
    id: str
    file_name: str
    file_size: int
    course_id: str
    user_id: str
    chunk_size: int
    total_chunks: int
    uploaded_chunks: int = 0
    status: UploadStatus = UploadStatus.INITIATED
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def progress(self) -> float:
        if not self.total_chunks:
            return 0.0
        return round(self.uploaded_chunks / self.total_chunks * 100, 1)

    def apply_chunk_count(self, count: int) -> None:
        # uploading/ready выводятся из числа частей, остальные статусы хранятся явно
        self.uploaded_chunks = count
        if self.status in CLOSED_STATUSES:
            return
        if count == self.total_chunks:
            self.status = UploadStatus.READY
        elif count:
            self.status = UploadStatus.UPLOADING
        else:
            self.status = UploadStatus.INITIATED

    def expected_chunk_length(self, index: int) -> int:
        if index == self.total_chunks - 1:
            return self.file_size - self.chunk_size * (self.total_chunks - 1)
        return self.chunk_size

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> UploadSession:
        data = dict(data)
        data["status"] = UploadStatus(data["status"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        return cls(**data)


@dataclass(frozen=True)
class ChunkReceipt:
    upload_id: str
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int
    progress: float
    status: UploadStatus


@dataclass(frozen=True)
class ProcessingStep:
    name: str
    status: str
    progress: int


@dataclass(frozen=True)
class ContentStatus:
    id: str
    status: str
    processing_steps: list[ProcessingStep]
    file_id: str | None = None
    error: str | None = None


@dataclass
class ContentJobRecord:
    id: str
    user_id: str
    course_id: str
    file_name: str
    file_size: int
    content_type: str
    status: str
    file_id: str | None = None
    storage_name: str | None = None
    sha256: str | None = None
    error: str | None = None
    validated: bool = False
    created_at: datetime | None = None
