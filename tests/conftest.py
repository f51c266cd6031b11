"""Shared pytest fixtures for Call Recording Ingest tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from callrec import config
from callrec.db import init_db
from services.recording_ingest.main import (
    app,
    get_db_session,
    get_object_store,
    get_temp_files,
    override_object_store,
    override_session_factory,
)
from services.recording_ingest.storage import LocalObjectStore
from services.recording_ingest.tempfiles import LocalTempFileProvider
from tests.seed import RECORDINGS_BASE_URL, seed_directory


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory.
    The database is cleaned up after the test completes.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        override_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        override_session_factory(None)
        engine.dispose()


@pytest.fixture
def storage_dirs(tmp_path, monkeypatch):
    """Point recording storage and temp upload directories at tmp_path.

    Yields:
        tuple: (recordings_dir, upload_tmp_dir)
    """
    recordings_dir = tmp_path / "recordings"
    upload_tmp_dir = tmp_path / "tmp"
    monkeypatch.setattr(config, "RECORDINGS_DIR", recordings_dir)
    monkeypatch.setattr(config, "UPLOAD_TMP_DIR", upload_tmp_dir)
    yield recordings_dir, upload_tmp_dir


@pytest.fixture
def client(temp_db, storage_dirs):
    """Create a FastAPI test client with temp database and local storage.

    Overrides the database, object store and temp-file dependencies, and
    seeds users, leads and a SIM card. Overrides are cleared afterwards.

    Yields:
        tuple: (test_client, SessionFactory)
    """
    db_path, engine, SessionFactory = temp_db
    recordings_dir, upload_tmp_dir = storage_dirs
    seed_directory(SessionFactory)

    # Override the dependency
    def get_test_session():
        session = SessionFactory()
        try:
            yield session
        finally:
            session.close()

    store = LocalObjectStore(root=recordings_dir, base_url=RECORDINGS_BASE_URL)
    temp_files = LocalTempFileProvider(root=upload_tmp_dir)

    app.dependency_overrides[get_db_session] = get_test_session
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_temp_files] = lambda: temp_files

    with TestClient(app) as client:
        yield client, SessionFactory

    # Clean up dependency overrides
    app.dependency_overrides.clear()
    override_object_store(None)


@pytest.fixture
def sample_recording_bytes():
    """2 MB of pseudo-random bytes standing in for an MP3 recording."""
    return b"ID3" + os.urandom(2 * 1024 * 1024 - 3)
