import pytest

from app.pixelforge import create_app
from app.pixelforge.config import load_config
from app.pixelforge.db import session_scope
from app.pixelforge.models import AuditEvent


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["database"] == "ok"
    assert r.json["storage_backend"] == "local"

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_logout(client, seeded):
    # Anonymous gets a JSON 401
    r = client.get(f"/projects/{seeded.project_id}/documents")
    assert r.status_code == 401
    assert r.json["error"]["code"] == "Unauthorized"

    r = client.post("/auth/login", data={"email": "lead@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "PROJECT_LEAD"

    r = client.get(f"/projects/{seeded.project_id}/documents")
    assert r.status_code == 200
    assert r.json["document_groups"] == []

    r = client.post("/auth/logout")
    assert r.status_code == 200
    r = client.get(f"/projects/{seeded.project_id}/documents")
    assert r.status_code == 401


def test_bad_password_is_rejected_and_audited(client, seeded):
    r = client.post("/auth/login", data={"email": "lead@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"]["code"] == "InvalidCredentials"

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "lead@example.com"
        assert ev.request_id


def test_unknown_route_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "NotFound"


def test_config_defaults(monkeypatch):
    for k in ("STORAGE_BACKEND", "MAX_FILE_SIZE", "LOCAL_STORAGE_URL", "STORAGE_TIMEOUT_SECONDS"):
        monkeypatch.delenv(k, raising=False)
    cfg = load_config()
    assert cfg["STORAGE_BACKEND"] == "local"
    assert cfg["LOCAL_STORAGE_URL"] == "/storage"
    assert cfg["MAX_FILE_SIZE"] == 10 * 1024 * 1024
    assert cfg["MAX_CONTENT_LENGTH"] > cfg["MAX_FILE_SIZE"]
    assert cfg["STORAGE_TIMEOUT_SECONDS"] == 30


def test_config_rejects_non_integer_size(monkeypatch):
    monkeypatch.setenv("MAX_FILE_SIZE", "ten megs")
    with pytest.raises(RuntimeError, match="MAX_FILE_SIZE"):
        load_config()


def test_production_refuses_sqlite(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-real-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_missing_s3_settings_are_logged_not_fatal(tmp_path, monkeypatch, caplog):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("STORAGE_BACKEND", "s3")
    for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    assert app.config["STORAGE_BACKEND"] == "s3"
    assert "Missing required S3 env vars" in caplog.text
