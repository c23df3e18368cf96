"""Shared fixtures.

The environment is pinned before anything under ``src`` is imported so
cached settings and logging pick it up.
"""

import os
import tempfile


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="educonnect-forum-logs-"))
os.environ.setdefault("RECONCILER_RETRY_BASE_DELAY", "0.01")
os.environ.setdefault("RECONCILER_RETRY_MAX_DELAY", "0.02")
os.environ.setdefault("TRANSACTION_RETRY_BASE_DELAY", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.config.settings import Settings, get_settings  # noqa: E402
from src.forum.service import ForumService  # noqa: E402
from src.store.memory import InMemoryThreadStore  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Test settings."""
    return get_settings()


@pytest.fixture
def store() -> InMemoryThreadStore:
    """Fresh in-memory store."""
    return InMemoryThreadStore()


@pytest.fixture
def forum_service(store: InMemoryThreadStore, settings: Settings) -> ForumService:
    """ForumService over the in-memory store."""
    return ForumService(store, settings=settings)


@pytest.fixture
def client():
    """Test client running the full application lifespan."""
    from src.main import create_app  # noqa: PLC0415

    with TestClient(create_app()) as test_client:
        yield test_client
