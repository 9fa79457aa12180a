from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.campus import soft_delete
from app.campus.audit import record_event
from app.campus.blame import stamp_created, stamp_updated
from app.campus.errors import ValidationError
from app.campus.modules.attachments.service import (
    IncomingFile,
    UploadPolicy,
    attach_many,
    detach,
    get_attachment,
    list_attachments,
    open_attachment,
    serialize_attachment,
    validate_uploads,
)
from app.campus.modules.document_types.models import DocumentType
from app.campus.modules.documents import workflow
from app.campus.modules.documents.models import Document
from app.campus.utils import Page, clean_str, iso, paginate, parse_date, parse_int

if TYPE_CHECKING:
    from typing import BinaryIO

    from sqlalchemy.orm import Query, Session
    from app.campus.models import User
    from app.campus.modules.attachments.models import Attachment
    from app.campus.soft_delete import Trashed
    from app.campus.storage import Storage

OWNER_TYPE = Document.attachment_owner_type

TITLE_MAX = 255
DESCRIPTION_MAX = 1000
FILE_TYPE_MAX = 64
DUE_SOON_DEFAULT_DAYS = 7
SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 20
DUE_DATE_FILTERS = ("overdue", "due_soon", "no_due_date")


def validate_document_payload(s: "Session", payload: dict, *, partial: bool = False) -> tuple[dict[str, Any], dict[str, list[str]]]:
    """
    Validate create/update input. Returns (clean values, errors).
    With partial=True only keys present in the payload are validated and returned.
    """
    errors: dict[str, list[str]] = {}
    clean: dict[str, Any] = {}

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("title"):
        title = clean_str(payload.get("title"))
        if not title:
            errors["title"] = ["Title is required."]
        elif len(title) > TITLE_MAX:
            errors["title"] = [f"Title may not be longer than {TITLE_MAX} characters."]
        clean["title"] = title

    if present("description"):
        description = clean_str(payload.get("description")) or None
        if description and len(description) > DESCRIPTION_MAX:
            errors["description"] = [f"Description may not be longer than {DESCRIPTION_MAX} characters."]
        clean["description"] = description

    if present("comments"):
        clean["comments"] = clean_str(payload.get("comments"))

    if present("file_type"):
        file_type = clean_str(payload.get("file_type")) or "document"
        if len(file_type) > FILE_TYPE_MAX:
            errors["file_type"] = [f"File type may not be longer than {FILE_TYPE_MAX} characters."]
        clean["file_type"] = file_type

    if present("status"):
        raw = clean_str(payload.get("status"))
        if raw:
            try:
                clean["status"] = workflow.normalize_status(raw)
            except ValidationError as e:
                errors.update(e.errors)
        elif not partial:
            clean["status"] = workflow.INITIAL_STATUS

    if present("document_type_id"):
        try:
            type_id = parse_int(payload.get("document_type_id"), field="document_type_id")
        except ValidationError as e:
            errors.update(e.errors)
            type_id = None
        else:
            if type_id is not None:
                dt = s.get(DocumentType, type_id)
                if dt is None or dt.is_deleted:
                    errors["document_type_id"] = ["Selected document type does not exist."]
        clean["document_type_id"] = type_id

    if present("due_date"):
        try:
            clean["due_date"] = parse_date(payload.get("due_date"), field="due_date")
        except ValidationError as e:
            errors.update(e.errors)

    return clean, errors


def create_document(
    s: "Session",
    storage: "Storage",
    payload: dict,
    files: list[IncomingFile],
    actor: "User | None",
    *,
    policy: UploadPolicy,
) -> Document:
    """
    Create a document and store its files in one unit.
    Any failure propagates; the caller rolls back and no stored bytes are left behind.
    """
    clean, errors = validate_document_payload(s, payload)
    if errors:
        raise ValidationError(errors)
    validate_uploads(files, policy)

    d = Document(
        title=clean["title"],
        description=clean.get("description"),
        comments=clean.get("comments") or "",
        file_type=clean.get("file_type") or "document",
        status=clean.get("status") or workflow.INITIAL_STATUS,
        document_type_id=clean.get("document_type_id"),
        due_date=clean.get("due_date"),
    )
    stamp_created(d, actor)
    s.add(d)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="document.create",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"title": d.title, "status": d.status, "files": len(files)},
    )

    if files:
        attach_many(s, storage, owner_type=OWNER_TYPE, owner_id=d.id, files=files, actor=actor, policy=policy)
    return d


def get_document(s: "Session", doc_id: int, *, trashed: "Trashed" = "without") -> Document:
    return soft_delete.get_or_404(s, Document, doc_id, trashed=trashed)


def update_document(
    s: "Session",
    storage: "Storage",
    doc_id: int,
    payload: dict,
    files: list[IncomingFile],
    actor: "User | None",
    *,
    policy: UploadPolicy,
) -> Document:
    d = get_document(s, doc_id)
    clean, errors = validate_document_payload(s, payload, partial=True)
    if errors:
        raise ValidationError(errors)
    validate_uploads(files, policy)

    changes: dict[str, dict[str, Any]] = {}
    for key, new in clean.items():
        old = getattr(d, key)
        if new != old:
            changes[key] = {"old": old, "new": new}
            setattr(d, key, new)
    stamp_updated(d, actor)

    record_event(
        s,
        actor=actor,
        action="document.update",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"changes": changes, "files": len(files)},
    )
    s.flush()

    if files:
        attach_many(s, storage, owner_type=OWNER_TYPE, owner_id=d.id, files=files, actor=actor, policy=policy)
    return d


def delete_document(s: "Session", doc_id: int, actor: "User | None") -> Document:
    return soft_delete.soft_delete(s, Document, doc_id, actor)


def restore_document(s: "Session", doc_id: int, actor: "User | None") -> Document:
    return soft_delete.restore(s, Document, doc_id, actor)


def force_delete_document(s: "Session", storage: "Storage", doc_id: int, actor: "User | None") -> int:
    return soft_delete.force_delete(s, Document, doc_id, actor, storage=storage)


def upload_files(
    s: "Session",
    storage: "Storage",
    doc_id: int,
    files: list[IncomingFile],
    actor: "User | None",
    *,
    policy: UploadPolicy,
) -> list["Attachment"]:
    d = get_document(s, doc_id)
    if not files:
        raise ValidationError({"files": ["At least one file is required."]})
    atts = attach_many(s, storage, owner_type=OWNER_TYPE, owner_id=d.id, files=files, actor=actor, policy=policy)
    stamp_updated(d, actor)
    return atts


def delete_file(s: "Session", storage: "Storage", doc_id: int, file_id: int, actor: "User | None") -> None:
    d = get_document(s, doc_id)
    att = get_attachment(s, owner_type=OWNER_TYPE, owner_id=d.id, attachment_id=file_id)
    detach(s, storage, att, actor)
    stamp_updated(d, actor)


def open_file(
    s: "Session", storage: "Storage", doc_id: int, file_id: int, actor: "User | None"
) -> tuple["Attachment", "BinaryIO"]:
    """
    Look up an attachment by owner and open its bytes.
    Works for trashed documents; purged ones have no attachments left.
    """
    d = get_document(s, doc_id, trashed="with")
    att = get_attachment(s, owner_type=OWNER_TYPE, owner_id=d.id, attachment_id=file_id)
    fobj = open_attachment(storage, att)
    record_event(
        s,
        actor=actor,
        action="document.download",
        entity_type="Attachment",
        entity_id=str(att.id),
        metadata={"doc_id": d.id, "filename": att.original_name},
    )
    return att, fobj


def change_document_status(
    s: "Session",
    doc_id: int,
    target_status: str,
    comment: str | None,
    actor: "User | None",
    *,
    now: datetime | None = None,
) -> Document:
    d = get_document(s, doc_id)
    workflow.change_status(s, d, target_status, comment, actor, now=now)
    s.flush()
    return d


def _apply_text_search(q: "Query", term: str) -> "Query":
    like = f"%{term}%"
    return q.filter(or_(Document.title.ilike(like), Document.description.ilike(like), Document.comments.ilike(like)))


def _apply_filters(q: "Query", filters: dict, *, today: date) -> "Query":
    search = clean_str(filters.get("search"))
    if search:
        q = _apply_text_search(q, search)

    status = clean_str(filters.get("status_id") or filters.get("document_status"))
    if status:
        q = q.filter(Document.status == workflow.normalize_status(status, field="status_id"))

    creator = parse_int(filters.get("created_by_user_id") or filters.get("user_id"), field="user_id")
    if creator is not None:
        q = q.filter(Document.created_by_user_id == creator)

    file_type = clean_str(filters.get("file_type"))
    if file_type:
        q = q.filter(Document.file_type == file_type)

    type_id = parse_int(filters.get("document_type_id"), field="document_type_id")
    if type_id is not None:
        q = q.filter(Document.document_type_id == type_id)

    due_filter = clean_str(filters.get("due_date_filter"))
    if due_filter:
        if due_filter not in DUE_DATE_FILTERS:
            raise ValidationError({"due_date_filter": [f"Must be one of: {', '.join(DUE_DATE_FILTERS)}."]})
        if due_filter == "overdue":
            q = _overdue(q, today)
        elif due_filter == "due_soon":
            days = parse_int(filters.get("due_days"), field="due_days", default=DUE_SOON_DEFAULT_DAYS, minimum=0)
            q = _due_soon(q, today, days or 0)
        else:
            q = q.filter(Document.due_date.is_(None))

    date_from = parse_date(filters.get("date_from"), field="date_from")
    if date_from:
        q = q.filter(Document.created_at >= datetime.combine(date_from, datetime.min.time()))
    date_to = parse_date(filters.get("date_to"), field="date_to")
    if date_to:
        q = q.filter(Document.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time()))
    return q


def _overdue(q: "Query", today: date) -> "Query":
    return q.filter(Document.due_date.is_not(None), Document.due_date < today)


def _due_soon(q: "Query", today: date, days: int) -> "Query":
    return q.filter(
        Document.due_date.is_not(None),
        Document.due_date >= today,
        Document.due_date <= today + timedelta(days=days),
    )


def list_documents(
    s: "Session",
    filters: dict,
    *,
    page: int = 1,
    per_page: int = 15,
    today: date | None = None,
) -> Page:
    raw_trashed = filters.get("trashed")
    if not raw_trashed and clean_str(filters.get("status")).lower() in ("active", "inactive"):
        raw_trashed = filters.get("status")
    q = soft_delete.query(s, Document, soft_delete.parse_trashed(raw_trashed))
    q = _apply_filters(q, filters, today=today or date.today())
    q = q.order_by(Document.created_at.desc(), Document.id.desc())
    return paginate(q, page=page, per_page=per_page)


def search_documents(s: "Session", term: str, filters: dict | None = None) -> list[Document]:
    term = clean_str(term)
    if len(term) < SEARCH_MIN_LENGTH:
        raise ValidationError({"query": [f"Must be at least {SEARCH_MIN_LENGTH} characters."]})
    filters = dict(filters or {})
    filters.pop("search", None)
    q = _apply_text_search(soft_delete.query(s, Document), term)
    q = _apply_filters(q, filters, today=date.today())
    return q.order_by(Document.created_at.desc(), Document.id.desc()).limit(SEARCH_LIMIT).all()


def documents_by_status(s: "Session", status: str, filters: dict | None = None) -> list[Document]:
    target = workflow.normalize_status(status)
    creator = parse_int((filters or {}).get("user_id"), field="user_id")
    q = soft_delete.query(s, Document).filter(Document.status == target)
    if creator is not None:
        q = q.filter(Document.created_by_user_id == creator)
    return q.order_by(Document.created_at.desc(), Document.id.desc()).all()


def document_stats(s: "Session", filters: dict | None = None, *, today: date | None = None) -> dict[str, Any]:
    filters = filters or {}
    today = today or date.today()
    q = soft_delete.query(s, Document)
    creator = parse_int(filters.get("user_id"), field="user_id")
    if creator is not None:
        q = q.filter(Document.created_by_user_id == creator)
    date_from = parse_date(filters.get("date_from"), field="date_from")
    if date_from:
        q = q.filter(Document.created_at >= datetime.combine(date_from, datetime.min.time()))
    date_to = parse_date(filters.get("date_to"), field="date_to")
    if date_to:
        q = q.filter(Document.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time()))

    by_status = {status: 0 for status in workflow.STATUSES}
    rows = q.with_entities(Document.status, func.count(Document.id)).group_by(Document.status).all()
    for status, count in rows:
        by_status[status] = int(count)

    return {
        "total_documents": q.count(),
        "documents_by_status": by_status,
        "overdue_documents": _overdue(q, today).count(),
        "due_soon_documents": _due_soon(q, today, DUE_SOON_DEFAULT_DAYS).count(),
    }


def serialize_document(s: "Session", d: Document, *, include_files: bool = True, today: date | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": d.id,
        "title": d.title,
        "description": d.description,
        "comments": d.comments,
        "file_type": d.file_type,
        "status": d.status,
        "document_type_id": d.document_type_id,
        "document_type": d.document_type.name if d.document_type else None,
        "due_date": iso(d.due_date),
        "is_overdue": d.is_overdue(today),
        "created_at": iso(d.created_at),
        "updated_at": iso(d.updated_at),
        "deleted_at": iso(d.deleted_at),
        "created_by_user_id": d.created_by_user_id,
        "updated_by_user_id": d.updated_by_user_id,
        "deleted_by_user_id": d.deleted_by_user_id,
    }
    if include_files:
        out["files"] = [serialize_attachment(a) for a in list_attachments(s, owner_type=OWNER_TYPE, owner_id=d.id)]
    return out
