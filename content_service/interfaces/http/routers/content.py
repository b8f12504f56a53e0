import base64
import binascii

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from ....application.use_cases.chunked_upload import ChunkedUploadCoordinator, IUploadSessionRepository
from ....domain.entities import UploadStatus
from ....domain.errors import FileTooLarge, InvalidChunk, UploadError, UploadNotFound, UploadNotReady
from ....infrastructure.cache import get_cache, set_cache
from ....infrastructure.db import get_session_factory
from ....infrastructure.jobs import run_processing_job
from ....infrastructure.metrics import (
    cache_hits_total,
    cache_misses_total,
    upload_chunk_bytes_total,
    upload_chunks_total,
    uploads_initiated_total,
)
from ....infrastructure.storage import LocalArtifactStore
from ..authz import get_user_id
from ..deps import get_artifact_store, get_coordinator, get_session_repository
from ..schemas import (
    CompleteUploadReq,
    CompleteUploadResp,
    ContentStatusOut,
    InitiateUploadReq,
    InitiateUploadResp,
    ProcessingStepOut,
    UploadChunkReq,
    UploadChunkResp,
)

router = APIRouter(prefix="/api/v1/content", tags=["content"])

def _http_error(e: UploadError) -> HTTPException:
    if isinstance(e, UploadNotFound):
        return HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    if isinstance(e, UploadNotReady):
        return HTTPException(status.HTTP_409_CONFLICT, str(e))
    if isinstance(e, FileTooLarge):
        return HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, str(e))
    if isinstance(e, InvalidChunk):
        return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))
    return HTTPException(status.HTTP_400_BAD_REQUEST, str(e))

@router.post("/upload/initiate", response_model=InitiateUploadResp, status_code=status.HTTP_201_CREATED)
def initiate_upload(payload: InitiateUploadReq,
                    user_id: str = Depends(get_user_id),
                    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator)):
    try:
        session = coordinator.initiate(payload.file_name, payload.file_size, payload.course_id, user_id)
    except UploadError as e:
        raise _http_error(e)
    uploads_initiated_total.inc()
    return InitiateUploadResp(
        upload_id=session.id,
        chunk_size=session.chunk_size,
        total_chunks=session.total_chunks,
        status=session.status.value,
    )

@router.post("/upload/chunk", response_model=UploadChunkResp)
def upload_chunk(payload: UploadChunkReq,
                 user_id: str = Depends(get_user_id),
                 coordinator: ChunkedUploadCoordinator = Depends(get_coordinator)):
    try:
        data = base64.b64decode(payload.chunk_data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "chunkData is not valid base64")
    try:
        receipt = coordinator.upload_chunk(payload.upload_id, payload.chunk_index, data, user_id)
    except UploadError as e:
        raise _http_error(e)
    upload_chunks_total.inc()
    upload_chunk_bytes_total.inc(len(data))
    return UploadChunkResp(
        upload_id=receipt.upload_id,
        chunk_index=receipt.chunk_index,
        uploaded_chunks=receipt.uploaded_chunks,
        total_chunks=receipt.total_chunks,
        progress=receipt.progress,
        status=receipt.status.value,
    )

@router.post("/upload/complete", response_model=CompleteUploadResp, status_code=status.HTTP_202_ACCEPTED)
def complete_upload(payload: CompleteUploadReq,
                    background: BackgroundTasks,
                    user_id: str = Depends(get_user_id),
                    coordinator: ChunkedUploadCoordinator = Depends(get_coordinator),
                    sessions: IUploadSessionRepository = Depends(get_session_repository),
                    artifacts: LocalArtifactStore = Depends(get_artifact_store),
                    session_factory=Depends(get_session_factory)):
    try:
        coordinator.complete_upload(payload.upload_id, user_id)
    except UploadError as e:
        raise _http_error(e)
    # Обработка идёт после ответа; результат отдаёт /{id}/status
    background.add_task(run_processing_job, payload.upload_id, session_factory, sessions, artifacts)
    return CompleteUploadResp(
        upload_id=payload.upload_id,
        status=UploadStatus.PROCESSING.value,
        message="File processing started",
    )

@router.get("/{content_id}/status", response_model=ContentStatusOut, response_model_exclude_none=True,
            dependencies=[Depends(get_user_id)])
def content_status(content_id: str, coordinator: ChunkedUploadCoordinator = Depends(get_coordinator)):
    # Завершённый статус уже не меняется, его можно кэшировать
    cache_key = f"content:{content_id}:status"
    cached = get_cache(cache_key)
    if cached:
        cache_hits_total.inc()
        return cached

    cache_misses_total.inc()
    result = coordinator.get_content_status(content_id)
    out = ContentStatusOut(
        id=result.id,
        status=result.status,
        processing_steps=[ProcessingStepOut(name=s.name, status=s.status, progress=s.progress)
                          for s in result.processing_steps],
        file_id=result.file_id,
        error=result.error,
    )
    if result.status == UploadStatus.COMPLETED.value:
        set_cache(cache_key, out.model_dump(by_alias=True, exclude_none=True))
    return out
