import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Store
from main import create_app
from storage import FileStorage


@pytest.fixture
def settings(tmp_path):
    settings = Settings()
    settings.jwt_secret = "test-secret"
    settings.upload_dir = str(tmp_path / "uploads")
    settings.attendance_target = 75.0
    return settings


@pytest.fixture
def store():
    return Store(mongomock.MongoClient()["semester_manager_test"])


@pytest.fixture
def storage(settings):
    return FileStorage(settings.upload_dir)


@pytest.fixture
def client(settings, store, storage):
    app = create_app(settings, store=store, storage=storage)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(client):
    def _make_user(email="ana@example.com", name="Ana", password="secret123"):
        resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 201, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _make_user


@pytest.fixture
def auth(make_user):
    return make_user()


@pytest.fixture
def other_auth(make_user):
    return make_user("ben@example.com", "Ben")


@pytest.fixture
def subject(client, auth):
    resp = client.post("/api/subjects", json={"name": "Algorithms", "code": "CS201", "credits": 4}, headers=auth)
    assert resp.status_code == 201, resp.text
    return resp.json()
