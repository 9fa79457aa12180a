from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.campus import soft_delete
from app.campus.audit import record_event
from app.campus.blame import stamp_created, stamp_updated
from app.campus.errors import Conflict, ValidationError
from app.campus.modules.document_types.models import DocumentType
from app.campus.utils import Page, clean_str, iso, paginate

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.campus.models import User
    from app.campus.soft_delete import Trashed

NAME_MAX = 255


def _clean_name(payload: dict) -> str:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError({"name": ["Name is required."]})
    if len(name) > NAME_MAX:
        raise ValidationError({"name": [f"Name may not be longer than {NAME_MAX} characters."]})
    return name


def _ensure_unique(s: "Session", name: str, *, exclude_id: int | None = None) -> None:
    # Trashed rows still hold their name.
    q = s.query(DocumentType).filter(DocumentType.name == name)
    if exclude_id is not None:
        q = q.filter(DocumentType.id != exclude_id)
    if q.first() is not None:
        raise Conflict(f"A document type named '{name}' already exists.")


def list_document_types(
    s: "Session",
    *,
    search: str | None = None,
    trashed: "Trashed" = "without",
    page: int = 1,
    per_page: int = 15,
) -> Page:
    q = soft_delete.query(s, DocumentType, trashed)
    term = clean_str(search)
    if term:
        q = q.filter(DocumentType.name.ilike(f"%{term}%"))
    return paginate(q.order_by(DocumentType.name.asc(), DocumentType.id.asc()), page=page, per_page=per_page)


def all_document_types(s: "Session") -> list[DocumentType]:
    return soft_delete.query(s, DocumentType).order_by(DocumentType.name.asc()).all()


def get_document_type(s: "Session", type_id: int, *, trashed: "Trashed" = "without") -> DocumentType:
    return soft_delete.get_or_404(s, DocumentType, type_id, trashed=trashed)


def create_document_type(s: "Session", payload: dict, actor: "User | None") -> DocumentType:
    name = _clean_name(payload)
    _ensure_unique(s, name)

    dt = DocumentType(name=name)
    stamp_created(dt, actor)
    s.add(dt)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="document_type.create",
        entity_type="DocumentType",
        entity_id=str(dt.id),
        metadata={"name": name},
    )
    return dt


def update_document_type(s: "Session", type_id: int, payload: dict, actor: "User | None") -> DocumentType:
    dt = get_document_type(s, type_id)
    name = _clean_name(payload)
    if name != dt.name:
        _ensure_unique(s, name, exclude_id=dt.id)
        old = dt.name
        dt.name = name
        record_event(
            s,
            actor=actor,
            action="document_type.update",
            entity_type="DocumentType",
            entity_id=str(dt.id),
            metadata={"changes": {"name": {"old": old, "new": name}}},
        )
    stamp_updated(dt, actor)
    s.flush()
    return dt


def delete_document_type(s: "Session", type_id: int, actor: "User | None") -> DocumentType:
    return soft_delete.soft_delete(s, DocumentType, type_id, actor)


def restore_document_type(s: "Session", type_id: int, actor: "User | None") -> DocumentType:
    return soft_delete.restore(s, DocumentType, type_id, actor)


def force_delete_document_type(s: "Session", type_id: int, actor: "User | None") -> None:
    # documents.document_type_id is ON DELETE SET NULL
    soft_delete.force_delete(s, DocumentType, type_id, actor)


def document_type_stats(s: "Session") -> dict[str, int]:
    return {
        "total": soft_delete.query(s, DocumentType).count(),
        "trashed": soft_delete.query(s, DocumentType, "only").count(),
    }


def serialize_document_type(dt: DocumentType) -> dict[str, Any]:
    return {
        "id": dt.id,
        "name": dt.name,
        "created_at": iso(dt.created_at),
        "updated_at": iso(dt.updated_at),
        "deleted_at": iso(dt.deleted_at),
        "created_by_user_id": dt.created_by_user_id,
        "updated_by_user_id": dt.updated_by_user_id,
        "deleted_by_user_id": dt.deleted_by_user_id,
    }
