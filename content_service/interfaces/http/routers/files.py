import re
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from ....domain.entities import UploadStatus
from ....infrastructure.db import get_db
from ....infrastructure.repositories import ContentJobRepository
from ....infrastructure.storage import LocalArtifactStore
from ..authz import get_stream_claims
from ..deps import get_artifact_store

router = APIRouter(prefix="/api/v1/files", tags=["files"])

STREAM_BLOCK_SIZE = 64 * 1024
_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: str, size: int) -> tuple[int, int] | None:
    """Разбирает одиночный диапазон "bytes=a-b". None, если заголовок надо игнорировать.

    Неудовлетворимый диапазон поднимает 416.
    """
    match = _RANGE_RE.match(header.strip())
    if not match or match.group(1) == match.group(2) == "":
        return None
    first, last = match.groups()
    if first == "":
        # суффикс: последние N байт
        length = int(last)
        if length == 0:
            raise _unsatisfiable(size)
        return max(size - length, 0), size - 1
    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        raise _unsatisfiable(size)
    return start, min(end, size - 1)


def _unsatisfiable(size: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
        detail="Requested range not satisfiable",
        headers={"Content-Range": f"bytes */{size}"},
    )


def _iter_file(path: Path, start: int, end: int):
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            block = f.read(min(STREAM_BLOCK_SIZE, remaining))
            if not block:
                break
            remaining -= len(block)
            yield block


@router.get("/{file_id}/stream", dependencies=[Depends(get_stream_claims)])
def stream_file(file_id: str, request: Request,
                db: Session = Depends(get_db),
                artifacts: LocalArtifactStore = Depends(get_artifact_store)):
    job = ContentJobRepository(db).get_by_file_id(file_id)
    if not job or job.status != UploadStatus.COMPLETED.value or not artifacts.exists(job.storage_name):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "file not found")

    path = artifacts.path(job.storage_name)
    size = path.stat().st_size
    headers = {"Accept-Ranges": "bytes"}

    byte_range = None
    range_header = request.headers.get("range")
    if range_header:
        byte_range = parse_range(range_header, size)

    if byte_range is None:
        headers["Content-Length"] = str(size)
        if size == 0:
            return Response(content=b"", media_type=job.content_type, headers=headers)
        return StreamingResponse(_iter_file(path, 0, size - 1), media_type=job.content_type, headers=headers)

    start, end = byte_range
    headers["Content-Range"] = f"bytes {start}-{end}/{size}"
    headers["Content-Length"] = str(end - start + 1)
    return StreamingResponse(
        _iter_file(path, start, end),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=job.content_type,
        headers=headers,
    )
