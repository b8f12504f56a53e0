from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ....domain.entities import UploadStatus
from ....infrastructure.db import get_db
from ....infrastructure.repositories import BookmarkRepository, ContentJobRepository, PlaybackProgressRepository
from ..authz import get_user_id
from ..schemas import (
    BookmarkOut,
    BookmarkReq,
    ContentVersionOut,
    ContentVersionsOut,
    PlaybackProgressOut,
    PlaybackProgressReq,
)
from .enrollments import to_epoch_ms

router = APIRouter(prefix="/api/v1/content", tags=["playback"])

INITIAL_VERSION = "1.0.0"

def _progress_out(row) -> PlaybackProgressOut:
    return PlaybackProgressOut(
        content_id=row.content_id,
        user_id=row.user_id,
        current_time=row.current_time,
        duration=row.duration,
        percent_complete=row.percent_complete,
        last_updated=to_epoch_ms(row.updated_at),
    )

def _bookmark_out(row) -> BookmarkOut:
    return BookmarkOut(
        id=row.id,
        content_id=row.content_id,
        user_id=row.user_id,
        time=row.time,
        note=row.note,
        created_at=to_epoch_ms(row.created_at),
    )

@router.post("/{content_id}/progress", response_model=PlaybackProgressOut)
def update_playback_progress(
    content_id: str,
    payload: PlaybackProgressReq,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    row = PlaybackProgressRepository(db).upsert(user_id, content_id, payload.current_time, payload.duration)
    return _progress_out(row)

@router.get("/{content_id}/progress", response_model=PlaybackProgressOut)
def get_playback_progress(
    content_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    row = PlaybackProgressRepository(db).get(user_id, content_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No progress for this content")
    return _progress_out(row)

@router.get("/{content_id}/bookmarks", response_model=list[BookmarkOut], response_model_exclude_none=True)
def list_bookmarks(
    content_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return [_bookmark_out(r) for r in BookmarkRepository(db).list_for_content(user_id, content_id)]

@router.post("/{content_id}/bookmarks", response_model=BookmarkOut, response_model_exclude_none=True,
             status_code=status.HTTP_201_CREATED)
def create_bookmark(
    content_id: str,
    payload: BookmarkReq,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    row = BookmarkRepository(db).create(user_id, content_id, payload.time, payload.note)
    return _bookmark_out(row)

@router.get("/{content_id}/versions", response_model=ContentVersionsOut)
def content_versions(
    content_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Пока у файла одна версия: та, что собрана из загрузки."""
    jobs = ContentJobRepository(db)
    job = jobs.get(content_id) or jobs.get_by_file_id(content_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    version = ContentVersionOut(
        id=f"{content_id}_v1",
        version=INITIAL_VERSION,
        created_at=to_epoch_ms(job.created_at) if job.created_at else 0,
        size=job.file_size,
        status="active" if job.status == UploadStatus.COMPLETED.value else job.status,
    )
    return ContentVersionsOut(content_id=content_id, versions=[version])
