from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.channel_repository import ChannelRepository
from backend.app.repositories.credential_repository import CredentialRepository
from backend.app.repositories.database import Database
from backend.app.repositories.video_repository import VideoRepository


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    monkeypatch.delenv("SUBFEED_DISCORD_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("SUBFEED_GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.delenv("SUBFEED_GOOGLE_CLIENT_SECRET", raising=False)


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "feed.db")
    db.initialize()
    return db


@pytest.fixture
def channel_repository(database: Database) -> ChannelRepository:
    return ChannelRepository(database)


@pytest.fixture
def video_repository(database: Database) -> VideoRepository:
    return VideoRepository(database)


@pytest.fixture
def credential_repository(database: Database) -> CredentialRepository:
    return CredentialRepository(database)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("SUBFEED_DATA_DIR", str(data_dir))
    monkeypatch.setenv("SUBFEED_SCHEDULER_ENABLED", "0")
    monkeypatch.setenv("SUBFEED_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
