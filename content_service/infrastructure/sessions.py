import json
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import redis

from ..application.use_cases.chunked_upload import IUploadSessionRepository
from ..domain.entities import CLOSED_STATUSES, UploadSession, UploadStatus
from ..domain.errors import UploadNotFound, UploadNotReady


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryUploadSessionRepository(IUploadSessionRepository):
    """Сессии в памяти процесса: теряются при рестарте и не разделяются между инстансами."""

    def __init__(self, ttl_seconds: int | None = None, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._chunks: dict[str, dict[int, bytes]] = {}
        self._lock = threading.RLock()

    def create(self, session: UploadSession) -> None:
        with self._lock:
            self.purge_expired()
            self._sessions[session.id] = replace(session)
            self._chunks[session.id] = {}

    def get(self, upload_id: str) -> UploadSession | None:
        with self._lock:
            stored = self._live(upload_id)
            if stored is None:
                return None
            session = replace(stored)
            session.apply_chunk_count(len(self._chunks[upload_id]))
            return session

    def put_chunk(self, upload_id: str, index: int, data: bytes) -> int:
        with self._lock:
            self.purge_expired()
            stored = self._live(upload_id)
            if stored is None:
                raise UploadNotFound(upload_id)
            # Проверка и запись под одной блокировкой: complete_upload не вклинится
            if stored.status in CLOSED_STATUSES:
                raise UploadNotReady(upload_id, stored.status.value, "Upload no longer accepts chunks")
            chunks = self._chunks[upload_id]
            chunks[index] = data
            stored.updated_at = self._clock()
            return len(chunks)

    def get_chunk(self, upload_id: str, index: int) -> bytes | None:
        with self._lock:
            return self._chunks.get(upload_id, {}).get(index)

    def chunk_indices(self, upload_id: str) -> set[int]:
        with self._lock:
            return set(self._chunks.get(upload_id, {}))

    def update_status(self, upload_id: str, status: UploadStatus,
                      expected: UploadStatus | None = None) -> bool:
        with self._lock:
            stored = self._live(upload_id)
            if stored is None:
                return False
            if expected is not None:
                current = replace(stored)
                current.apply_chunk_count(len(self._chunks[upload_id]))
                if current.status != expected:
                    return False
            stored.status = status
            stored.updated_at = self._clock()
            return True

    def drop_chunks(self, upload_id: str) -> None:
        with self._lock:
            if upload_id in self._chunks:
                self._chunks[upload_id] = {}

    def delete(self, upload_id: str) -> None:
        with self._lock:
            self._sessions.pop(upload_id, None)
            self._chunks.pop(upload_id, None)

    def purge_expired(self) -> list[str]:
        """Удаляет все брошенные сессии вместе с частями."""
        if self.ttl is None:
            return []
        with self._lock:
            now = self._clock()
            expired = [sid for sid, s in self._sessions.items() if now - s.updated_at > self.ttl]
            for upload_id in expired:
                self.delete(upload_id)
        return expired

    def _live(self, upload_id: str) -> UploadSession | None:
        stored = self._sessions.get(upload_id)
        if stored is not None and self.ttl is not None and self._clock() - stored.updated_at > self.ttl:
            self.delete(upload_id)
            return None
        return stored


class RedisUploadSessionRepository(IUploadSessionRepository):
    """Сессия хранится JSON-строкой в upload:<id>, части в хэше upload:<id>:chunks."""

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self.client = client
        self.ttl = ttl_seconds

    @staticmethod
    def _key(upload_id: str) -> str:
        return f"upload:{upload_id}"

    @staticmethod
    def _chunks_key(upload_id: str) -> str:
        return f"upload:{upload_id}:chunks"

    def create(self, session: UploadSession) -> None:
        self.client.set(self._key(session.id), json.dumps(session.to_dict()), ex=self.ttl)

    def get(self, upload_id: str) -> UploadSession | None:
        raw = self.client.get(self._key(upload_id))
        if raw is None:
            return None
        session = UploadSession.from_dict(json.loads(raw))
        session.apply_chunk_count(self.client.hlen(self._chunks_key(upload_id)))
        return session

    def put_chunk(self, upload_id: str, index: int, data: bytes) -> int:
        key, chunks_key = self._key(upload_id), self._chunks_key(upload_id)
        with self.client.pipeline() as pipe:
            while True:
                try:
                    # WATCH на ключ сессии: смена статуса между проверкой и записью отменит запись
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.reset()
                        raise UploadNotFound(upload_id)
                    status = UploadStatus(json.loads(raw)["status"])
                    if status in CLOSED_STATUSES:
                        pipe.reset()
                        raise UploadNotReady(upload_id, status.value, "Upload no longer accepts chunks")
                    pipe.multi()
                    pipe.hset(chunks_key, str(index), data)
                    pipe.hlen(chunks_key)
                    pipe.expire(chunks_key, self.ttl)
                    pipe.expire(key, self.ttl)
                    _, count, _, _ = pipe.execute()
                    return count
                except redis.WatchError:
                    continue

    def get_chunk(self, upload_id: str, index: int) -> bytes | None:
        return self.client.hget(self._chunks_key(upload_id), str(index))

    def chunk_indices(self, upload_id: str) -> set[int]:
        return {int(k) for k in self.client.hkeys(self._chunks_key(upload_id))}

    def update_status(self, upload_id: str, status: UploadStatus,
                      expected: UploadStatus | None = None) -> bool:
        key = self._key(upload_id)
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key, self._chunks_key(upload_id))
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.reset()
                        return False
                    session = UploadSession.from_dict(json.loads(raw))
                    session.apply_chunk_count(pipe.hlen(self._chunks_key(upload_id)))
                    if expected is not None and session.status != expected:
                        pipe.reset()
                        return False
                    session.status = status
                    session.updated_at = _utcnow()
                    pipe.multi()
                    pipe.set(key, json.dumps(session.to_dict()), ex=self.ttl)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    continue

    def drop_chunks(self, upload_id: str) -> None:
        self.client.delete(self._chunks_key(upload_id))

    def delete(self, upload_id: str) -> None:
        self.client.delete(self._key(upload_id), self._chunks_key(upload_id))
