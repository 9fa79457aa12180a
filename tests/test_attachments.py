from dataclasses import dataclass

import pytest
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from app.campus import create_app
from app.campus.db import session_scope
from app.campus.errors import NotFound, StorageIOError, ValidationError
from app.campus.models import Base, User
from app.campus.modules.attachments import service as attachments
from app.campus.modules.attachments.models import Attachment
from app.campus.modules.attachments.service import IncomingFile, UploadPolicy
from app.campus.modules.documents import service as documents
from app.campus.modules.documents.models import Document
from app.campus.storage import LocalStorage, StorageError, StorageKeyNotFound


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(User(email="a@example.com", password_hash=generate_password_hash("pw"), is_active=True))
    return app


@dataclass(frozen=True)
class FailingStorage(LocalStorage):
    """Fails every write after the first `ok_writes` succeed."""

    ok_writes: int = 0

    def put_bytes(self, key, data, *, content_type=None):
        written = [p for p in self.root.rglob("*") if p.is_file()] if self.root.exists() else []
        if len(written) >= self.ok_writes:
            raise StorageError("Could not write file to storage.", error="disk full")
        super().put_bytes(key, data, content_type=content_type)


def _files(root):
    return [p for p in root.rglob("*") if p.is_file()] if root.exists() else []


def _pdf(name="a.pdf", size=1024):
    return IncomingFile(filename=name, content_type="application/pdf", data=b"x" * size)


def test_upload_over_cap_is_rejected_before_any_write(app, tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    policy = UploadPolicy(max_bytes=1024)
    with pytest.raises(ValidationError) as ei:
        with app.app_context(), session_scope(app) as s:
            documents.create_document(s, storage, {"title": "T"}, [_pdf(size=1025)], None, policy=policy)
    assert "files.0" in ei.value.errors
    assert _files(tmp_path / "storage") == []
    with session_scope(app) as s:
        assert s.query(Document).count() == 0


def test_extension_allowlist_is_case_insensitive():
    policy = UploadPolicy(allowed_extensions=("pdf",))
    assert attachments.validate_upload(_pdf(name="REPORT.PDF"), policy) == "pdf"
    with pytest.raises(ValidationError) as ei:
        attachments.validate_upload(_pdf(name="notes"), policy)
    assert "(none)" in ei.value.errors["file"][0]


def test_failed_byte_write_rolls_back_document_and_earlier_bytes(app, tmp_path):
    storage = FailingStorage(root=tmp_path / "storage", ok_writes=1)
    with pytest.raises(StorageIOError):
        with app.app_context(), session_scope(app) as s:
            documents.create_document(
                s, storage, {"title": "T"}, [_pdf("a.pdf"), _pdf("b.pdf")], None, policy=UploadPolicy()
            )
    assert _files(tmp_path / "storage") == []
    with session_scope(app) as s:
        assert s.query(Document).count() == 0
        assert s.query(Attachment).count() == 0


def test_attach_stores_under_owner_prefix_with_metadata(app, tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        u = s.query(User).one()
        att = attachments.attach(
            s,
            storage,
            owner_type="document",
            owner_id=42,
            incoming=_pdf("../My Report.pdf", size=10),
            actor=u,
            policy=UploadPolicy(),
        )
        assert att.storage_key.startswith("documents/42/")
        assert att.storage_key.endswith(".pdf")
        assert att.original_name == "My_Report.pdf"
        assert att.size_bytes == 10
        assert att.uploaded_by_user_id == u.id
        assert len(att.sha256) == 64
        assert storage.exists(att.storage_key)


def test_purge_owner_removes_rows_and_bytes(app, tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        for name in ("a.pdf", "b.pdf"):
            attachments.attach(
                s, storage, owner_type="publication", owner_id=1, incoming=_pdf(name), actor=None, policy=UploadPolicy()
            )
        attachments.attach(
            s, storage, owner_type="document", owner_id=1, incoming=_pdf(), actor=None, policy=UploadPolicy()
        )
        assert attachments.purge_owner(s, storage, owner_type="publication", owner_id=1) == 2
        assert attachments.list_attachments(s, owner_type="publication", owner_id=1) == []
        assert len(attachments.list_attachments(s, owner_type="document", owner_id=1)) == 1
    assert len(_files(tmp_path / "storage")) == 1


def test_get_attachment_checks_owner(app, tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        att = attachments.attach(
            s, storage, owner_type="document", owner_id=1, incoming=_pdf(), actor=None, policy=UploadPolicy()
        )
        with pytest.raises(NotFound):
            attachments.get_attachment(s, owner_type="document", owner_id=2, attachment_id=att.id)
        with pytest.raises(NotFound):
            attachments.get_attachment(s, owner_type="publication", owner_id=1, attachment_id=att.id)


def test_missing_bytes_are_not_found(tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    with pytest.raises(StorageKeyNotFound):
        storage.open("documents/1/nope.pdf")
    # Deleting a missing key is fine.
    storage.delete("documents/1/nope.pdf")


def test_copy_attachment_duplicates_bytes(app, tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        src = attachments.attach(
            s, storage, owner_type="publication", owner_id=1, incoming=_pdf(), actor=None, policy=UploadPolicy()
        )
        dup = attachments.copy_attachment(s, storage, src, owner_type="publication", owner_id=2, actor=None)
        assert dup.storage_key != src.storage_key
        assert dup.storage_key.startswith("publications/2/")
        assert dup.sha256 == src.sha256
        assert storage.open(dup.storage_key).read() == b"x" * 1024


@pytest.mark.parametrize(
    ("size", "expected"),
    [(None, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (10 * 1024 * 1024, "10 MB")],
)
def test_format_file_size(size, expected):
    assert attachments.format_file_size(size) == expected


def _failing_flush(*args, **kwargs):
    raise SQLAlchemyError("database is locked")


def test_metadata_write_failure_removes_written_bytes(app, tmp_path, monkeypatch):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        with monkeypatch.context() as mp, pytest.raises(StorageIOError) as ei:
            mp.setattr(s, "flush", _failing_flush)
            attachments.attach(
                s, storage, owner_type="document", owner_id=1, incoming=_pdf(), actor=None, policy=UploadPolicy()
            )
        assert "database is locked" in ei.value.error
        s.rollback()
        assert s.query(Attachment).count() == 0
    assert _files(tmp_path / "storage") == []


def test_copy_metadata_failure_removes_copied_bytes(app, tmp_path, monkeypatch):
    storage = LocalStorage(root=tmp_path / "storage")
    with app.app_context(), session_scope(app) as s:
        src = attachments.attach(
            s, storage, owner_type="publication", owner_id=1, incoming=_pdf(), actor=None, policy=UploadPolicy()
        )
        src_key = src.storage_key
        with monkeypatch.context() as mp, pytest.raises(StorageIOError):
            mp.setattr(s, "flush", _failing_flush)
            attachments.copy_attachment(s, storage, src, owner_type="publication", owner_id=2, actor=None)
    assert [p.relative_to(tmp_path / "storage").as_posix() for p in _files(tmp_path / "storage")] == [src_key]
