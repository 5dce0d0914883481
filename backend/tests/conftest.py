import os

os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DB_SUPERVISE_INTERVAL", "3600")

from collections.abc import Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sqlproxy.core.config import settings  # noqa: E402
from sqlproxy.core.pool import PoolManager  # noqa: E402
from sqlproxy.main import app  # noqa: E402
from tests.utils.fakes import FakeDatabase  # noqa: E402


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def client(
    fake_db: FakeDatabase, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """App with the lifespan running against a fake database (pool of 5)."""
    monkeypatch.setattr(
        "sqlproxy.main.build_pool_manager",
        lambda: PoolManager(fake_db.connect, max_size=5, acquire_timeout=1.0),
    )
    app.state.shutdown = None
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def api_key_headers() -> dict[str, str]:
    return {"X-API-Key": settings.API_KEY}
