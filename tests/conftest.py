"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest

from src.core import db_client
from src.core.config import settings


@pytest.fixture(scope="session", autouse=True)
def isolated_db_path(tmp_path_factory: pytest.TempPathFactory) -> Generator[Path]:
    """Point the document store at a throwaway file so no test touches a real database."""
    path = tmp_path_factory.mktemp("store") / "eventdesk.db"
    patcher = pytest.MonkeyPatch()
    patcher.setattr(settings, "sqlite_db_path", str(path))
    yield path
    patcher.undo()


@pytest.fixture
async def sqlite_store(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> AsyncGenerator[Path]:
    """A fresh SQLite document store for one test."""
    path = tmp_path / "eventdesk.db"
    monkeypatch.setattr(settings, "sqlite_db_path", str(path))
    await db_client.init_db()
    yield path
    await db_client.close_connection()
