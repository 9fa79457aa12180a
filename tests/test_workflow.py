from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.campus import create_app
from app.campus.db import session_scope
from app.campus.errors import ValidationError
from app.campus.models import AuditEvent, Base, User
from app.campus.modules.attachments.service import UploadPolicy
from app.campus.modules.documents import service as documents
from app.campus.modules.documents import workflow
from app.campus.storage import LocalStorage


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add_all(
            [
                User(email="author@example.com", password_hash=generate_password_hash("pw"), is_active=True),
                User(email="reviewer@example.com", password_hash=generate_password_hash("pw"), is_active=True),
            ]
        )
    return app


def _new_doc(s, tmp_path, actor, **payload):
    payload.setdefault("title", "Request")
    return documents.create_document(
        s, LocalStorage(root=tmp_path / "storage"), payload, [], actor, policy=UploadPolicy()
    )


def test_append_comment_formats_entries():
    first = workflow.append_comment("", "Submitted", datetime(2031, 5, 6, 7, 8, 9))
    assert first == "2031-05-06 07:08:09 - Submitted"
    second = workflow.append_comment(first, "Approved", datetime(2031, 5, 7, 10, 0, 0))
    assert second == "2031-05-06 07:08:09 - Submitted\n\n2031-05-07 10:00:00 - Approved"


@pytest.mark.parametrize("raw", ["pending", "PENDING", " Pending "])
def test_normalize_status_is_case_insensitive(raw):
    assert workflow.normalize_status(raw) == "Pending"


def test_normalize_status_rejects_unknown():
    with pytest.raises(ValidationError) as ei:
        workflow.normalize_status("Published")
    assert "status" in ei.value.errors


def test_new_documents_start_as_draft(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        author = s.query(User).filter(User.email == "author@example.com").one()
        assert _new_doc(s, tmp_path, author).status == workflow.DRAFT


def test_transition_with_comment_appends_one_line_and_moves_updater(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        author = s.query(User).filter(User.email == "author@example.com").one()
        reviewer = s.query(User).filter(User.email == "reviewer@example.com").one()
        d = _new_doc(s, tmp_path, author, comments="Initial note")

        now = datetime(2031, 1, 2, 3, 4, 5)
        documents.change_document_status(s, d.id, "Rejected", "Missing signature", reviewer, now=now)

        assert d.status == "Rejected"
        assert d.comments == "Initial note\n\n2031-01-02 03:04:05 - Missing signature"
        assert d.comments.count(" - ") == 1
        assert d.updated_by_user_id == reviewer.id
        assert d.created_by_user_id == author.id
        assert d.updated_at == now

        ev = s.query(AuditEvent).filter(AuditEvent.action == "document.status_change").one()
        assert ev.reason == "Missing signature"
        assert ev.actor_user_id == reviewer.id


def test_transition_without_comment_leaves_log_untouched(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        d = _new_doc(s, tmp_path, None)
        documents.change_document_status(s, d.id, "Pending", None, None)
        assert d.status == "Pending"
        assert d.comments == ""


def test_any_status_reaches_any_other(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        d = _new_doc(s, tmp_path, None)
        for source in workflow.STATUSES:
            for target in workflow.STATUSES:
                d.status = source
                documents.change_document_status(s, d.id, target, None, None)
                assert d.status == target


def test_overlong_comment_is_rejected(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        d = _new_doc(s, tmp_path, None)
        with pytest.raises(ValidationError):
            documents.change_document_status(s, d.id, "Approved", "x" * 1001, None)
        assert d.status == "Draft"


def test_non_text_comment_is_logged_as_text(app, tmp_path):
    with app.app_context(), session_scope(app) as s:
        d = _new_doc(s, tmp_path, None)
        documents.change_document_status(s, d.id, "Approved", 5, None, now=datetime(2031, 1, 2, 3, 4, 5))
        assert d.status == "Approved"
        assert d.comments == "2031-01-02 03:04:05 - 5"
