from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ....infrastructure.db import get_db
from ....infrastructure.repositories import EnrollmentProgressRepository
from ..authz import get_user_id
from ..schemas import CourseProgressOut, ProgressOut, ProgressUpdateReq

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])

def to_epoch_ms(value: datetime) -> int:
    # SQLite возвращает naive datetime, считаем его UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)

@router.patch("/progress", response_model=ProgressOut)
def update_progress(
    payload: ProgressUpdateReq,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    row = EnrollmentProgressRepository(db).upsert(
        user_id=user_id,
        course_id=payload.course_id,
        lesson_id=payload.lesson_id,
        completed=payload.completed,
        last_position=payload.last_position,
        total_duration=payload.total_duration,
    )
    return ProgressOut(
        course_id=row.course_id,
        lesson_id=row.lesson_id,
        completed=row.completed,
        completed_at=row.completed_at.isoformat() if row.completed_at else None,
        last_updated=to_epoch_ms(row.updated_at),
    )

@router.get("/progress", response_model=CourseProgressOut)
def course_progress(
    course_id: str = Query(..., alias="courseId"),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    rows = EnrollmentProgressRepository(db).list_for_course(user_id, course_id)
    return CourseProgressOut(
        course_id=course_id,
        completed_lessons=[r.lesson_id for r in rows if r.completed],
        last_updated=max((to_epoch_ms(r.updated_at) for r in rows), default=0),
    )
