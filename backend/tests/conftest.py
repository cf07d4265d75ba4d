from __future__ import annotations

import datetime as dt
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="timespan-tests-"))
os.environ.setdefault("TS_SQLITE_PATH", str(_TEST_ROOT / "default.db"))
os.environ.setdefault("TS_EXPORT_DIR", str(_TEST_ROOT / "exports"))
os.environ.setdefault("TS_TIMEZONE", "UTC")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from timespan import models
from timespan.database import build_engine, get_db
from timespan.main import app

UTC = dt.timezone.utc


@pytest.fixture(scope="function")
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "timespan.db"


@pytest.fixture(scope="function")
def engine(temp_db_path: Path):
    engine = build_engine(f"sqlite:///{temp_db_path}", timeout=1)
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> Callable[[], Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 1, 1)


def at(day: dt.date, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


class GitRepo:
    """A throwaway repository with deterministic commit times."""

    def __init__(self, path: Path):
        self.path = path
        self._clock = 1704099600  # 2024-01-01 09:00 UTC
        self.git("init", "-q")
        self.git("config", "user.name", "Test User")
        self.git("config", "user.email", "test@example.com")
        self.git("config", "commit.gpgsign", "false")

    def git(self, *args: str) -> str:
        env = {
            **os.environ,
            "GIT_AUTHOR_DATE": f"@{self._clock} +0000",
            "GIT_COMMITTER_DATE": f"@{self._clock} +0000",
        }
        result = subprocess.run(
            ["git", "-C", str(self.path), *args], check=True, capture_output=True, text=True, env=env
        )
        return result.stdout

    def commit(self, message: str, files: dict[str, str], minutes_later: int = 60) -> str:
        self._clock += minutes_later * 60
        for name, content in files.items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            self.git("add", name)
        self.git("commit", "-q", "-m", message)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture()
def git_repo(tmp_path: Path) -> GitRepo:
    path = tmp_path / "alpha-repo"
    path.mkdir()
    return GitRepo(path)
