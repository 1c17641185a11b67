import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before it is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="backlog-api-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-bytes-for-hs256")

from fastapi.testclient import TestClient  # noqa: E402

from backlog_api.main import app  # noqa: E402


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


@pytest.fixture
def register_user(client):
    """Return a factory that registers a fresh user and yields auth headers."""
    def _make(username=None, password="pass123"):
        username = username or f"user-{uuid.uuid4().hex[:10]}"
        r = client.post('/auth/register', json={'username': username, 'password': password})
        assert r.status_code == 200
        login = client.post('/auth/login', json={'username': username, 'password': password})
        assert login.status_code == 200
        return {'Authorization': f"Bearer {login.json()['access_token']}"}
    return _make


@pytest.fixture
def auth_headers(register_user):
    return register_user()


@pytest.fixture
def make_backlog(client):
    def _make(headers, title="Sprint 1", description=None):
        r = client.post('/api/backlogs', json={'title': title, 'description': description}, headers=headers)
        assert r.status_code == 201
        return r.json()
    return _make


@pytest.fixture
def make_epic(client):
    def _make(headers, backlog_id, title="Auth"):
        r = client.post('/api/epics', json={'title': title, 'productBacklogListId': backlog_id}, headers=headers)
        assert r.status_code == 201
        return r.json()
    return _make


def _pbi_payload(backlog_id=None, **overrides):
    payload = {
        'pic': 'alice',
        'title': 'Login',
        'priority': 'High',
        'storyPoint': 5,
        'businessValue': 'Users can sign in',
        'userStory': 'As a user I want to log in',
        'acceptanceCriteria': 'Given valid credentials I am signed in',
        'notes': None,
        'productBacklogListId': backlog_id,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def pbi_payload():
    return _pbi_payload


@pytest.fixture
def make_pbi(client):
    def _make(headers, backlog_id, **overrides):
        r = client.post('/api/pbis', json=_pbi_payload(backlog_id, **overrides), headers=headers)
        assert r.status_code == 201, r.text
        return r.json()
    return _make
