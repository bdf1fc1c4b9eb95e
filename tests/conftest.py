"""
Shared fixtures: a Flask app on a throwaway SQLite file with local storage under tmp_path,
seeded with one project and four users (admin, project creator, assigned developer, outsider).
"""

from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.pixelforge import create_app
from app.pixelforge.db import session_scope
from app.pixelforge.models import (
    ROLE_ADMIN,
    ROLE_DEVELOPER,
    ROLE_PROJECT_LEAD,
    Base,
    Project,
    ProjectAssignment,
    User,
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_PUBLIC_URL", "MAX_FILE_SIZE"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def seeded(app):
    with session_scope(app) as s:
        users = {
            "admin": User(email="admin@example.com", password_hash=generate_password_hash("pw"), role=ROLE_ADMIN),
            "lead": User(email="lead@example.com", password_hash=generate_password_hash("pw"), role=ROLE_PROJECT_LEAD),
            "dev": User(email="dev@example.com", password_hash=generate_password_hash("pw"), role=ROLE_DEVELOPER),
            "outsider": User(email="outsider@example.com", password_hash=generate_password_hash("pw"), role=ROLE_DEVELOPER),
        }
        s.add_all(users.values())
        s.flush()
        project = Project(name="Apollo", created_by_id=users["lead"].id)
        s.add(project)
        s.flush()
        s.add(ProjectAssignment(project_id=project.id, user_id=users["dev"].id))
        s.flush()
        ids = SimpleNamespace(project_id=project.id, **{name: u.id for name, u in users.items()})
    return ids


@pytest.fixture()
def session(app):
    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(client):
    def _login(email: str, password: str = "pw"):
        client.post("/auth/logout")
        r = client.post("/auth/login", data={"email": email, "password": password})
        assert r.status_code == 200
        return r

    return _login
