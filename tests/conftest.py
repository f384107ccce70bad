"""Shared fixtures: in-memory MongoDB, isolated model storage, API client."""

import mongomock
import pytest
from starlette.testclient import TestClient

from modelhub.api.deps import get_db, get_runtimes, get_storage
from modelhub.main import app
from modelhub.services.model_runtime_service import ModelRuntimeRegistry
from modelhub.services.storage_service import StorageService


# ---------------------------------------------------------------------------
# Persistence / storage
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """A fresh mongomock database per test."""
    return mongomock.MongoClient()["modelhub_test"]


@pytest.fixture
def storage(tmp_path):
    return StorageService(
        datasets_root=str(tmp_path / "datasets"),
        models_root=str(tmp_path / "models"),
    )


@pytest.fixture
def runtimes(storage):
    """Runtime registry isolated from the process-wide one."""
    return ModelRuntimeRegistry(storage)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

@pytest.fixture
def client(db, storage, runtimes):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_runtimes] = lambda: runtimes
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Registers a user through the API; returns (auth headers, user json)."""
    def _register(username, password="secret123", email=None):
        body = {"username": username, "password": password}
        if email:
            body["email"] = email
        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        return {"Authorization": f"Bearer {data['token']}"}, data["user"]
    return _register
