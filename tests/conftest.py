from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import mapin.db.session as db_session
from mapin.core.settings import get_settings
from mapin.main import app


@pytest.fixture()
def session_factory(tmp_path):
    database_path = tmp_path / "test.db"
    db_session.configure_engine(f"sqlite:///{database_path}")
    db_session.init_db()
    return db_session.get_session_factory()


@pytest.fixture()
def media_root(tmp_path, monkeypatch):
    root = tmp_path / "media"
    monkeypatch.setattr(get_settings(), "media_root", str(root))
    return root


@pytest.fixture()
def client(session_factory, media_root):
    with TestClient(app) as test_client:
        yield test_client
