"""
Test read-only HTTP access to blobs.
"""

import pytest
from fastapi.testclient import TestClient

from backup_store import BackupStoreEngine
from backup_store.integrity.hashing import compute_hash
from backup_store.web import create_app


@pytest.fixture
def store(tmp_path):
    engine = BackupStoreEngine(tmp_path)
    engine.initialize()
    return engine


@pytest.fixture
def client(store):
    return TestClient(create_app(store.cas))


def test_get_blob(store, client):
    digest = store.add_bytes(b'content1')

    response = client.get(f"/{digest}")

    assert response.status_code == 200
    assert response.content == b'content1'


def test_missing_blob(client):
    response = client.get(f"/{compute_hash(b'missing')}")

    assert response.status_code == 404


@pytest.mark.parametrize("path", ["/", "/0", "/not-a-digest", "/abc/def"])
def test_invalid_path(client, path):
    assert client.get(path).status_code == 400


def test_nested_path_refused(store, client):
    digest = store.add_bytes(b'content1')

    assert client.get(f"/{digest}/").status_code == 400
    assert client.get(f"/x/{digest}").status_code == 400
