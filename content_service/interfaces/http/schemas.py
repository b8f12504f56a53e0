from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

# --- Загрузка

class InitiateUploadReq(CamelModel):
    file_name: str = Field(min_length=1, max_length=512)
    file_size: int = Field(gt=0)
    course_id: str

class InitiateUploadResp(CamelModel):
    upload_id: str
    chunk_size: int
    total_chunks: int
    status: str

class UploadChunkReq(CamelModel):
    upload_id: str
    chunk_index: int = Field(ge=0)
    chunk_data: str  # base64

class UploadChunkResp(CamelModel):
    upload_id: str
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int
    progress: float
    status: str

class CompleteUploadReq(CamelModel):
    upload_id: str

class CompleteUploadResp(CamelModel):
    upload_id: str
    status: str
    message: str

class ProcessingStepOut(CamelModel):
    name: str
    status: str
    progress: int

class ContentStatusOut(CamelModel):
    id: str
    status: str
    processing_steps: list[ProcessingStepOut]
    file_id: str | None = None
    error: str | None = None

# --- Прогресс

class ProgressUpdateReq(CamelModel):
    course_id: str
    lesson_id: str
    completed: bool | None = None
    last_position: float | None = None
    total_duration: float | None = None

class ProgressOut(CamelModel):
    course_id: str
    lesson_id: str
    completed: bool
    completed_at: str | None = None
    last_updated: int

class CourseProgressOut(CamelModel):
    course_id: str
    completed_lessons: list[str]
    last_updated: int

# --- Воспроизведение

class PlaybackProgressReq(CamelModel):
    current_time: float = Field(ge=0)
    duration: float = Field(gt=0)

class PlaybackProgressOut(CamelModel):
    content_id: str
    user_id: str
    current_time: float
    duration: float
    percent_complete: float
    last_updated: int

class BookmarkReq(CamelModel):
    time: float = Field(ge=0)
    note: str | None = Field(default=None, max_length=2000)

class BookmarkOut(CamelModel):
    id: str
    content_id: str
    user_id: str
    time: float
    note: str | None = None
    created_at: int

class ContentVersionOut(CamelModel):
    id: str
    version: str
    created_at: int
    size: int
    status: str

class ContentVersionsOut(CamelModel):
    content_id: str
    versions: list[ContentVersionOut]
