import pytest
from werkzeug.security import generate_password_hash

from app.campus import create_app
from app.campus.db import session_scope
from app.campus.models import AuditEvent, Base, Permission, Role, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        p = Permission(key="documents.view", name="Documents: view")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(email="admin@example.com", name="Admin", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        guest = User(email="guest@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        s.add_all([p, r, u, guest])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_requires_login(client):
    r = client.get("/api/documents/")
    assert r.status_code == 401
    assert r.json["success"] is False


def test_login_me_logout(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["data"]["email"] == "admin@example.com"
    assert r.json["data"]["permissions"] == ["documents.view"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["data"]["roles"] == ["admin"]

    r = client.get("/api/documents/")
    assert r.status_code == 200

    r = client.post("/auth/logout")
    assert r.status_code == 200
    r = client.get("/auth/me")
    assert r.status_code == 401

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id.asc()).all()]
        assert actions == ["auth.login", "auth.logout"]


def test_invalid_credentials_are_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json == {"success": False, "message": "Invalid credentials."}

    r = client.post("/auth/login", data={"email": "", "password": ""})
    assert r.status_code == 422
    assert "email" in r.json["errors"]

    # A successful login resets the per-IP attempt window.
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200


def test_missing_permission_is_forbidden(client):
    client.post("/auth/login", json={"email": "guest@example.com", "password": "pw"})
    r = client.get("/api/documents/")
    assert r.status_code == 403
    assert r.json["message"] == "Missing permission: documents.view"


def test_unknown_route_uses_json_envelope(client):
    r = client.get("/api/nowhere")
    assert r.status_code == 404
    assert r.json["success"] is False
