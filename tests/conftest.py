import fnmatch
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from content_service.config import settings
from content_service.infrastructure.db import Base, get_db, get_session_factory
from content_service.infrastructure import models  # noqa: F401  регистрирует таблицы
from content_service.infrastructure.sessions import InMemoryUploadSessionRepository
from content_service.infrastructure.storage import LocalArtifactStore
from content_service.interfaces.http.deps import get_artifact_store, get_session_repository
from content_service.interfaces.http.routers import content as content_router
from content_service.main import app
from offline_client.api import ApiClient
from offline_client.network import ConnectivityProbe

MiB = 1024 * 1024


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Настройка тестового окружения"""
    # Без имитации долгой обработки
    monkeypatch.setattr(settings, "PROCESSING_DELAY_SECONDS", 0.0)
    # Отключаем кэш Redis для тестов
    monkeypatch.setattr(content_router, "get_cache", lambda key: None)
    monkeypatch.setattr(content_router, "set_cache", lambda key, value, ttl=None: False)


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def session_repo():
    return InMemoryUploadSessionRepository()


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(base_path=str(tmp_path / "storage"))


@pytest.fixture
def client(session_factory, session_repo, artifact_store):
    """Тестовый клиент сервиса с БД в памяти"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session_repository] = lambda: session_repo
    app.dependency_overrides[get_artifact_store] = lambda: artifact_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(sub: str, minutes: int = 60) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": sub, "role": "student", "exp": exp},
                      settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def token():
    return make_token("user-1")


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers():
    return {"Authorization": f"Bearer {make_token('user-2')}"}


# --- клиентская сторона

class StaticProbe(ConnectivityProbe):
    def __init__(self, online: bool = True):
        self.online = online

    def is_online(self) -> bool:
        return self.online


class FakeKeyValue:
    """Словарь с подмножеством API redis.Redis"""

    def __init__(self):
        self.data: dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        return True

    def delete(self, *keys):
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def scan_iter(self, match="*"):
        return iter([k for k in list(self.data) if fnmatch.fnmatchcase(k, match)])


def mock_api(handler, token: str | None = "tok") -> ApiClient:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://lms.test")
    return ApiClient(http, token=token)
