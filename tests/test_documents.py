import io

import pytest
from werkzeug.security import generate_password_hash

from app.campus import create_app
from app.campus.db import session_scope
from app.campus.models import AuditEvent, Base, Permission, Role, User
from app.campus.modules.attachments.models import Attachment
from app.campus.modules.documents.models import Document

DOC_PERMISSIONS = [
    ("documents.view", "Documents: view"),
    ("documents.create", "Documents: create"),
    ("documents.edit", "Documents: edit"),
    ("documents.delete", "Documents: delete"),
    ("documents.restore", "Documents: restore"),
    ("documents.force_delete", "Documents: force delete"),
    ("documents.status", "Documents: change status"),
]


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("UPLOAD_MAX_BYTES", "2048")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = [Permission(key=k, name=n) for k, n in DOC_PERMISSIONS]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all(perms + [r, u])

    c = app.test_client()
    c.storage_root = tmp_path / "storage"
    return c


def _login(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    return r.json["data"]["id"]


def _stored_files(root):
    return [p for p in root.rglob("*") if p.is_file()] if root.exists() else []


def test_document_vertical_slice_creates_uploads_transitions_and_audits(client):
    user_id = _login(client)

    r = client.post(
        "/api/documents/",
        data={
            "title": "Enrollment request",
            "description": "First year",
            "due_date": "2030-01-15",
            "files": [(io.BytesIO(b"x" * 1024), "a.pdf")],
        },
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    doc = r.json["data"]
    assert doc["status"] == "Draft"
    assert doc["created_by_user_id"] == user_id
    assert doc["updated_by_user_id"] == user_id
    assert len(doc["files"]) == 1
    assert doc["files"][0]["original_name"] == "a.pdf"
    assert doc["files"][0]["size_formatted"] == "1 KB"

    file_id = doc["files"][0]["id"]
    r = client.get(f"/api/documents/{doc['id']}/files/{file_id}/download")
    assert r.status_code == 200
    assert r.data == b"x" * 1024
    assert "a.pdf" in r.headers["Content-Disposition"]

    r = client.patch(
        f"/api/documents/{doc['id']}/change-status",
        json={"status": "approved", "comments": "Looks good"},
    )
    assert r.status_code == 200
    assert r.json["data"]["status"] == "Approved"
    assert r.json["data"]["comments"].endswith(" - Looks good")

    r = client.get("/api/documents/stats")
    assert r.status_code == 200
    stats = r.json["data"]
    assert stats["total_documents"] == 1
    assert stats["documents_by_status"]["Approved"] == 1
    assert stats["documents_by_status"]["Draft"] == 0

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id.asc()).all()]
        assert "document.create" in actions
        assert "attachment.upload" in actions
        assert "document.download" in actions
        assert "document.status_change" in actions


def test_create_validation_errors_are_field_level(client):
    _login(client)
    r = client.post("/api/documents/", json={"title": "", "status": "Bogus", "due_date": "tomorrow"})
    assert r.status_code == 422
    body = r.json
    assert body["success"] is False
    assert set(body["errors"]) == {"title", "status", "due_date"}


def test_oversized_upload_is_rejected_without_writing(client):
    _login(client)
    r = client.post(
        "/api/documents/",
        data={"title": "Too big", "files": [(io.BytesIO(b"x" * 4096), "big.pdf")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 422
    assert "files.0" in r.json["errors"]
    assert _stored_files(client.storage_root) == []
    with session_scope(client.application) as s:
        assert s.query(Document).count() == 0


def test_disallowed_extension_is_rejected(client):
    _login(client)
    r = client.post(
        "/api/documents/",
        data={"title": "Script", "files": [(io.BytesIO(b"echo"), "run.sh")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 422
    assert "File type not allowed" in r.json["errors"]["files.0"][0]


def test_delete_restore_and_trashed_listing(client):
    _login(client)
    doc_id = client.post("/api/documents/", json={"title": "Keep me"}).json["data"]["id"]

    r = client.delete(f"/api/documents/{doc_id}")
    assert r.status_code == 200
    assert client.get(f"/api/documents/{doc_id}").status_code == 404

    r = client.get("/api/documents/?trashed=only")
    assert [d["id"] for d in r.json["data"]] == [doc_id]
    r = client.get("/api/documents/?status=inactive")
    assert [d["id"] for d in r.json["data"]] == [doc_id]
    r = client.get("/api/documents/")
    assert r.json["data"] == []
    assert r.json["pagination"]["total"] == 0

    r = client.patch(f"/api/documents/{doc_id}/restore")
    assert r.status_code == 200
    assert r.json["data"]["deleted_at"] is None

    # Restoring a live row is a 404.
    assert client.patch(f"/api/documents/{doc_id}/restore").status_code == 404


def test_force_delete_purges_attachments_and_bytes(client):
    _login(client)
    r = client.post(
        "/api/documents/",
        data={"title": "T", "files": [(io.BytesIO(b"y" * 1024), "a.pdf")]},
        content_type="multipart/form-data",
    )
    doc = r.json["data"]
    file_id = doc["files"][0]["id"]
    assert len(_stored_files(client.storage_root)) == 1

    assert client.delete(f"/api/documents/{doc['id']}").status_code == 200
    r = client.delete(f"/api/documents/{doc['id']}/force")
    assert r.status_code == 200
    assert r.json["data"] == {"files_removed": 1}

    with session_scope(client.application) as s:
        assert s.query(Attachment).filter(Attachment.owner_type == "document", Attachment.owner_id == doc["id"]).count() == 0
        assert s.get(Document, doc["id"]) is None
    assert _stored_files(client.storage_root) == []

    r = client.get(f"/api/documents/{doc['id']}/files/{file_id}/download")
    assert r.status_code == 404


def test_upload_and_delete_single_file(client):
    _login(client)
    doc_id = client.post("/api/documents/", json={"title": "Files"}).json["data"]["id"]

    r = client.post(
        f"/api/documents/{doc_id}/files",
        data={"files": [(io.BytesIO(b"one"), "one.txt"), (io.BytesIO(b"two"), "two.txt")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert [f["original_name"] for f in r.json["data"]] == ["one.txt", "two.txt"]

    first = r.json["data"][0]["id"]
    assert client.delete(f"/api/documents/{doc_id}/files/{first}").status_code == 200
    files = client.get(f"/api/documents/{doc_id}").json["data"]["files"]
    assert [f["original_name"] for f in files] == ["two.txt"]
    assert len(_stored_files(client.storage_root)) == 1


def test_search_and_filters(client):
    _login(client)
    client.post("/api/documents/", json={"title": "Diploma request", "file_type": "pdf"})
    client.post("/api/documents/", json={"title": "Transcript", "description": "diploma copy"})
    client.post("/api/documents/", json={"title": "Other", "due_date": "2000-01-01"})

    r = client.get("/api/documents/search?query=diploma")
    assert r.status_code == 200
    assert sorted(d["title"] for d in r.json["data"]) == ["Diploma request", "Transcript"]

    r = client.get("/api/documents/search?query=d")
    assert r.status_code == 422

    r = client.get("/api/documents/?due_date_filter=overdue")
    assert [d["title"] for d in r.json["data"]] == ["Other"]
    assert r.json["data"][0]["is_overdue"] is True

    r = client.get("/api/documents/?file_type=pdf")
    assert [d["title"] for d in r.json["data"]] == ["Diploma request"]

    r = client.get("/api/documents/status/draft")
    assert len(r.json["data"]) == 3

    r = client.get("/api/documents/?per_page=2&page=2")
    assert r.json["pagination"]["current_page"] == 2
    assert r.json["pagination"]["last_page"] == 2
    assert len(r.json["data"]) == 1


def test_statuses_endpoint_lists_workflow_states(client):
    _login(client)
    r = client.get("/api/documents/statuses")
    assert r.json["data"] == ["Draft", "Pending", "Approved", "Rejected", "Archived"]


def test_numeric_status_comment_is_accepted(client):
    _login(client)
    r = client.post("/api/documents/", json={"title": "Transcript request"})
    assert r.status_code == 201
    doc_id = r.json["data"]["id"]

    r = client.patch(f"/api/documents/{doc_id}/change-status", json={"status": "Pending", "comments": 5})
    assert r.status_code == 200
    assert r.json["data"]["comments"].endswith(" - 5")


def test_due_date_with_trailing_text_is_rejected(client):
    _login(client)
    r = client.post("/api/documents/", json={"title": "Transcript request", "due_date": "2030-01-15junk"})
    assert r.status_code == 422
    assert "due_date" in r.json["errors"]
