"""Ownership stamping and the soft-delete store, exercised through the service layer."""
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.campus import create_app, soft_delete
from app.campus.blame import stamp_created, stamp_updated
from app.campus.db import session_scope
from app.campus.errors import NotFound, ValidationError
from app.campus.models import Base, User
from app.campus.modules.attachments.service import UploadPolicy
from app.campus.modules.document_types.models import DocumentType
from app.campus.modules.documents import service as documents
from app.campus.modules.documents.models import Document
from app.campus.storage import LocalStorage


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add_all(
            [
                User(email="a@example.com", password_hash=generate_password_hash("pw"), is_active=True),
                User(email="b@example.com", password_hash=generate_password_hash("pw"), is_active=True),
            ]
        )
    return app


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path / "storage")


def _user(s, email):
    return s.query(User).filter(User.email == email).one()


def _observable(d: Document) -> dict:
    return {
        "title": d.title,
        "description": d.description,
        "comments": d.comments,
        "status": d.status,
        "file_type": d.file_type,
        "due_date": d.due_date,
        "document_type_id": d.document_type_id,
        "created_by_user_id": d.created_by_user_id,
        "created_at": d.created_at,
    }


def test_create_with_actor_sets_creator_and_updater(app, storage):
    with app.app_context(), session_scope(app) as s:
        a = _user(s, "a@example.com")
        d = documents.create_document(s, storage, {"title": "T"}, [], a, policy=UploadPolicy())
        assert d.created_by_user_id == a.id
        assert d.updated_by_user_id == a.id
        assert d.deleted_by_user_id is None
        assert d.created_at == d.updated_at


def test_create_without_actor_leaves_identity_columns_null(app, storage):
    with app.app_context(), session_scope(app) as s:
        d = documents.create_document(s, storage, {"title": "T"}, [], None, policy=UploadPolicy())
        assert d.created_by_user_id is None
        assert d.updated_by_user_id is None
        assert d.created_at is not None


def test_created_by_is_write_once_and_update_moves_updater(app, storage):
    with app.app_context(), session_scope(app) as s:
        a = _user(s, "a@example.com")
        b = _user(s, "b@example.com")
        d = documents.create_document(s, storage, {"title": "T"}, [], a, policy=UploadPolicy())
        documents.update_document(s, storage, d.id, {"title": "T2"}, [], b, policy=UploadPolicy())
        assert d.title == "T2"
        assert d.created_by_user_id == a.id
        assert d.updated_by_user_id == b.id

        # Re-stamping creation keeps the original creator.
        stamp_created(d, b)
        assert d.created_by_user_id == a.id


def test_update_without_actor_keeps_last_updater():
    d = Document(title="x")
    stamp_created(d, None, now=datetime(2030, 1, 1))
    d.updated_by_user_id = 7
    stamp_updated(d, None, now=datetime(2030, 1, 2))
    assert d.updated_by_user_id == 7
    assert d.updated_at == datetime(2030, 1, 2)


def test_restore_of_delete_is_observably_equal(app, storage):
    with app.app_context(), session_scope(app) as s:
        a = _user(s, "a@example.com")
        b = _user(s, "b@example.com")
        dt = DocumentType(name="Certificate Request")
        stamp_created(dt, a)
        s.add(dt)
        s.flush()
        d = documents.create_document(
            s,
            storage,
            {"title": "T", "description": "D", "due_date": "2031-02-03", "document_type_id": dt.id},
            [],
            a,
            policy=UploadPolicy(),
        )
        before = _observable(d)

        documents.delete_document(s, d.id, b)
        assert d.deleted_at is not None
        assert d.deleted_by_user_id == b.id

        documents.restore_document(s, d.id, b)
        assert d.deleted_at is None
        assert d.deleted_by_user_id is None
        assert d.updated_by_user_id == b.id
        assert _observable(d) == before


def test_trashed_modes(app, storage):
    with app.app_context(), session_scope(app) as s:
        live = documents.create_document(s, storage, {"title": "live"}, [], None, policy=UploadPolicy())
        gone = documents.create_document(s, storage, {"title": "gone"}, [], None, policy=UploadPolicy())
        documents.delete_document(s, gone.id, None)
        s.flush()

        def titles(mode):
            return sorted(d.title for d in soft_delete.query(s, Document, mode).all())

        assert titles("without") == ["live"]
        assert titles("only") == ["gone"]
        assert titles("with") == ["gone", "live"]

        with pytest.raises(NotFound):
            documents.get_document(s, gone.id)
        assert documents.get_document(s, gone.id, trashed="with").id == gone.id
        with pytest.raises(NotFound):
            soft_delete.get_or_404(s, Document, live.id, trashed="only")


def test_delete_of_deleted_row_is_not_found(app, storage):
    with app.app_context(), session_scope(app) as s:
        d = documents.create_document(s, storage, {"title": "x"}, [], None, policy=UploadPolicy())
        documents.delete_document(s, d.id, None)
        with pytest.raises(NotFound):
            documents.delete_document(s, d.id, None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, "without"), ("active", "without"), ("with", "with"), ("all", "with"), ("only", "only"), ("inactive", "only")],
)
def test_parse_trashed(raw, expected):
    assert soft_delete.parse_trashed(raw) == expected


def test_parse_trashed_rejects_unknown_mode():
    with pytest.raises(ValidationError):
        soft_delete.parse_trashed("sometimes")
