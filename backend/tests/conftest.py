"""
Shared fixtures: an in-memory remote backend, device-local storage,
repositories and an API client wired to them.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reviewhub.api.app import app
from reviewhub.api.dependencies import (
    get_db,
    get_local_store,
    get_remote_backend,
    reset_dependencies,
)
from reviewhub.lib.db import build_engine, drop_db, init_db
from reviewhub.lib.metrics import reset_metrics
from reviewhub.lib.settings import settings
from reviewhub.services.chat_repository import ChatRepository
from reviewhub.services.local_store import LocalStore, MemoryDeviceStorage
from reviewhub.services.realtime import RealtimeHub
from reviewhub.services.remote_backend import SqlAlchemyBackend
from reviewhub.services.review_repository import ReviewRepository


@pytest.fixture(autouse=True)
def _fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    drop_db(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def backend(session_factory, hub, tmp_path):
    return SqlAlchemyBackend(
        session_factory,
        hub=hub,
        storage_root=str(tmp_path / "buckets"),
        public_url_base="http://test/storage",
    )


@pytest.fixture
def offline_backend(session_factory, hub, tmp_path):
    return SqlAlchemyBackend(
        session_factory,
        hub=hub,
        storage_root=str(tmp_path / "buckets"),
        public_url_base="http://test/storage",
        online=False,
    )


@pytest.fixture
def device_storage():
    return MemoryDeviceStorage()


@pytest.fixture
def local_store(device_storage):
    return LocalStore(device_storage)


@pytest.fixture
def review_repo(backend, local_store):
    return ReviewRepository(backend, local_store)


@pytest.fixture
def offline_review_repo(offline_backend, local_store):
    return ReviewRepository(offline_backend, local_store)


@pytest.fixture
def chat_repo(backend, local_store):
    return ChatRepository(backend, local_store)


@pytest.fixture
def offline_chat_repo(offline_backend, local_store):
    return ChatRepository(offline_backend, local_store)


def _client_for(remote, local_store, session_factory):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_remote_backend] = lambda: remote
    app.dependency_overrides[get_local_store] = lambda: local_store
    app.dependency_overrides[get_db] = override_db
    return TestClient(app)


@pytest.fixture
def client(backend, local_store, session_factory):
    """API client backed by the in-memory database (no lifespan, no scheduler)."""
    yield _client_for(backend, local_store, session_factory)
    app.dependency_overrides.clear()
    reset_dependencies()


@pytest.fixture
def offline_client(offline_backend, local_store, session_factory):
    """API client whose remote backend is unreachable."""
    yield _client_for(offline_backend, local_store, session_factory)
    app.dependency_overrides.clear()
    reset_dependencies()


@pytest.fixture
def override_settings(monkeypatch):
    """Set attributes on the global settings for one test."""
    def apply(**values):
        for key, value in values.items():
            monkeypatch.setattr(settings, key, value)
    return apply
