import os

# must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_USERNAMES"] = "admin"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from studygroups import models, repositories
from studygroups.database import engine, create_db_and_tables, drop_db_and_tables
from studygroups.services import Caller, StudyGroupService


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test an empty in-memory database."""
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def svc(session):
    return StudyGroupService(session)


@pytest.fixture
def make_user(session):
    """Create users directly in the store and return their `Caller`."""
    def _make(username: str, admin: bool = False) -> Caller:
        role = models.UserRole.ADMINISTRATOR if admin else models.UserRole.USER
        user = repositories.UserRepository(session).create(
            models.User(username=username, password_hash="x", role=role.value)
        )
        return Caller.from_user(user)
    return _make


@pytest.fixture
def approved_group(svc, make_user):
    """An approved "Physics Club" managed by `manager`."""
    admin = make_user("admin", admin=True)
    manager = make_user("manager")
    group = svc.create_study_group(manager.user_id, "Physics Club", "Weekly problem sets")
    svc.approve_study_group(admin, group.id)
    return group.id, manager, admin


@pytest.fixture
def client():
    from studygroups.main import app
    return TestClient(app)


@pytest.fixture
def login(client):
    """Register `username` through the API and return auth headers."""
    def _login(username: str, password: str = "pass123") -> dict:
        client.post('/auth/register', json={'username': username, 'password': password})
        r = client.post('/auth/login', json={'username': username, 'password': password})
        assert r.status_code == 200
        return {'Authorization': f"Bearer {r.json()['access_token']}"}
    return _login
