import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis

from content_service.domain.entities import UploadSession, UploadStatus
from content_service.domain.errors import UploadNotFound, UploadNotReady
from content_service.infrastructure.sessions import InMemoryUploadSessionRepository, RedisUploadSessionRepository


def make_session(upload_id="upload_1", total_chunks=2) -> UploadSession:
    return UploadSession(
        id=upload_id,
        file_name="a.bin",
        file_size=total_chunks * 4,
        course_id="c1",
        user_id="u1",
        chunk_size=4,
        total_chunks=total_chunks,
    )


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


# --- в памяти

def test_memory_status_derived_from_chunks():
    """Тест вывода статуса из числа частей"""
    repo = InMemoryUploadSessionRepository()
    repo.create(make_session())
    assert repo.get("upload_1").status == UploadStatus.INITIATED

    assert repo.put_chunk("upload_1", 1, b"efgh") == 1
    assert repo.get("upload_1").status == UploadStatus.UPLOADING
    assert repo.put_chunk("upload_1", 1, b"efgh") == 1
    assert repo.put_chunk("upload_1", 0, b"abcd") == 2
    assert repo.get("upload_1").status == UploadStatus.READY
    assert repo.chunk_indices("upload_1") == {0, 1}
    assert list(repo.iter_chunks("upload_1", 2)) == [b"abcd", b"efgh"]


def test_memory_get_returns_copy():
    repo = InMemoryUploadSessionRepository()
    repo.create(make_session())
    session = repo.get("upload_1")
    session.status = UploadStatus.FAILED
    assert repo.get("upload_1").status == UploadStatus.INITIATED


def test_memory_compare_and_set():
    """Тест условной смены статуса"""
    repo = InMemoryUploadSessionRepository()
    repo.create(make_session(total_chunks=1))
    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is False

    repo.put_chunk("upload_1", 0, b"abcd")
    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is True
    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is False
    assert repo.get("upload_1").status == UploadStatus.PROCESSING
    assert repo.update_status("missing", UploadStatus.FAILED) is False


def test_memory_iter_chunks_missing_raises():
    repo = InMemoryUploadSessionRepository()
    repo.create(make_session())
    repo.put_chunk("upload_1", 0, b"abcd")
    with pytest.raises(KeyError):
        list(repo.iter_chunks("upload_1", 2))


def test_memory_abandoned_session_expires():
    """Тест удаления брошенной сессии по TTL"""
    clock = FakeClock()
    repo = InMemoryUploadSessionRepository(ttl_seconds=60, clock=clock)
    session = make_session()
    session.updated_at = clock()
    repo.create(session)

    clock.advance(50)
    repo.put_chunk("upload_1", 0, b"abcd")
    clock.advance(50)
    # Активность продлевает сессию
    assert repo.get("upload_1") is not None

    clock.advance(61)
    assert repo.get("upload_1") is None
    assert repo.chunk_indices("upload_1") == set()
    with pytest.raises(UploadNotFound):
        repo.put_chunk("upload_1", 1, b"efgh")


def test_memory_expired_sessions_purged_on_create():
    """Тест очистки чужих брошенных сессий при создании новых"""
    clock = FakeClock()
    repo = InMemoryUploadSessionRepository(ttl_seconds=3600, clock=clock)
    old = make_session("old")
    old.updated_at = clock()
    repo.create(old)
    repo.put_chunk("old", 0, b"abcd")

    clock.advance(5 * 3600)
    for index in range(3):
        fresh = make_session(f"new_{index}")
        fresh.updated_at = clock()
        repo.create(fresh)

    assert "old" not in repo._sessions
    assert "old" not in repo._chunks
    assert len(repo._sessions) == 3


def test_memory_expired_sessions_purged_on_chunk():
    clock = FakeClock()
    repo = InMemoryUploadSessionRepository(ttl_seconds=60, clock=clock)
    for upload_id in ("a", "b"):
        session = make_session(upload_id)
        session.updated_at = clock()
        repo.create(session)

    clock.advance(30)
    repo.put_chunk("b", 0, b"abcd")
    clock.advance(40)
    repo.put_chunk("b", 1, b"efgh")

    assert "a" not in repo._sessions
    assert repo.get("b") is not None


def test_memory_put_chunk_rejected_after_completion():
    """Тест отказа в записи части в закрытую сессию"""
    repo = InMemoryUploadSessionRepository()
    repo.create(make_session(total_chunks=1))
    repo.put_chunk("upload_1", 0, b"abcd")
    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is True

    with pytest.raises(UploadNotReady):
        repo.put_chunk("upload_1", 0, b"XXXX")
    assert repo.get_chunk("upload_1", 0) == b"abcd"


# --- Redis

@pytest.fixture
def redis_client():
    return MagicMock()


def test_redis_create_sets_ttl(redis_client):
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)
    session = make_session()
    repo.create(session)

    key, raw = redis_client.set.call_args.args
    assert key == "upload:upload_1"
    assert json.loads(raw)["status"] == "initiated"
    assert redis_client.set.call_args.kwargs == {"ex": 3600}


def test_redis_get_applies_chunk_count(redis_client):
    """Тест чтения сессии из Redis"""
    redis_client.get.return_value = json.dumps(make_session().to_dict()).encode()
    redis_client.hlen.return_value = 2
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    session = repo.get("upload_1")
    assert session.status == UploadStatus.READY
    assert session.uploaded_chunks == 2
    redis_client.hlen.assert_called_once_with("upload:upload_1:chunks")


def test_redis_get_missing(redis_client):
    redis_client.get.return_value = None
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)
    assert repo.get("upload_1") is None


def test_redis_put_chunk(redis_client):
    """Тест записи части в хэш с продлением TTL"""
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(make_session().to_dict())
    pipe.execute.return_value = [1, 2, True, True]
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    assert repo.put_chunk("upload_1", 1, b"efgh") == 2
    pipe.watch.assert_called_with("upload:upload_1")
    pipe.multi.assert_called_once()
    pipe.hset.assert_called_once_with("upload:upload_1:chunks", "1", b"efgh")
    pipe.expire.assert_any_call("upload:upload_1", 3600)
    pipe.expire.assert_any_call("upload:upload_1:chunks", 3600)


def test_redis_put_chunk_into_expired_session(redis_client):
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = None
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    with pytest.raises(UploadNotFound):
        repo.put_chunk("upload_1", 0, b"abcd")
    pipe.hset.assert_not_called()


def test_redis_put_chunk_rejected_after_completion(redis_client):
    """Тест отказа в записи части, когда сессия уже в обработке"""
    session = make_session()
    session.status = UploadStatus.PROCESSING
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(session.to_dict())
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    with pytest.raises(UploadNotReady):
        repo.put_chunk("upload_1", 0, b"abcd")
    pipe.multi.assert_not_called()
    pipe.hset.assert_not_called()


def test_redis_put_chunk_retries_on_watch_error(redis_client):
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(make_session().to_dict())
    pipe.execute.side_effect = [redis.WatchError(), [0, 1, True, True]]
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    assert repo.put_chunk("upload_1", 0, b"abcd") == 1
    assert pipe.execute.call_count == 2


def test_redis_update_status_compare_and_set(redis_client):
    """Тест условной смены статуса через WATCH/MULTI"""
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(make_session().to_dict())
    pipe.hlen.return_value = 2
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is True
    pipe.watch.assert_called_with("upload:upload_1", "upload:upload_1:chunks")
    pipe.multi.assert_called_once()
    key, raw = pipe.set.call_args.args
    assert key == "upload:upload_1"
    assert json.loads(raw)["status"] == "processing"


def test_redis_update_status_rejects_unexpected(redis_client):
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(make_session().to_dict())
    pipe.hlen.return_value = 1
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is False
    pipe.set.assert_not_called()


def test_redis_update_status_retries_on_watch_error(redis_client):
    """Тест повтора транзакции при конкурентном изменении"""
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = json.dumps(make_session().to_dict())
    pipe.hlen.return_value = 2
    pipe.execute.side_effect = [redis.WatchError(), [True]]
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)

    assert repo.update_status("upload_1", UploadStatus.PROCESSING, expected=UploadStatus.READY) is True
    assert pipe.execute.call_count == 2


def test_redis_update_status_missing_session(redis_client):
    pipe = redis_client.pipeline.return_value.__enter__.return_value
    pipe.get.return_value = None
    repo = RedisUploadSessionRepository(redis_client, ttl_seconds=3600)
    assert repo.update_status("upload_1", UploadStatus.FAILED) is False
