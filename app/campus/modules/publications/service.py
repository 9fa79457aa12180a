from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import exists, or_

from app.campus import soft_delete
from app.campus.audit import record_event
from app.campus.blame import stamp_created, stamp_updated
from app.campus.errors import NotFound, ValidationError
from app.campus.modules.attachments.models import Attachment
from app.campus.modules.attachments.service import (
    IncomingFile,
    UploadPolicy,
    attach,
    copy_attachment,
    detach,
    list_attachments,
    open_attachment,
    serialize_attachment,
    validate_upload,
)
from app.campus.modules.publications.models import EXPIRING_SOON_DAYS, Publication
from app.campus.utils import Page, clean_str, iso, paginate, parse_bool, parse_date

if TYPE_CHECKING:
    from typing import BinaryIO

    from sqlalchemy.orm import Query, Session
    from app.campus.models import User
    from app.campus.soft_delete import Trashed
    from app.campus.storage import Storage

logger = logging.getLogger(__name__)

OWNER_TYPE = Publication.attachment_owner_type

TITLE_MAX = 255
BODY_MAX = 65535
UNIVERSITY_MAX = 255
YEAR_MAX = 16
STATUS_FILTERS = ("active", "expired", "expiring_soon")
COPY_SUFFIX = " (Copy)"
CLEANUP_DEFAULT_DAYS = 30


def validate_publication_payload(
    payload: dict, *, partial: bool = False, today: date | None = None
) -> tuple[dict[str, Any], dict[str, list[str]]]:
    today = today or date.today()
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

    if present("body"):
        body = clean_str(payload.get("body"))
        if not body:
            errors["body"] = ["Body is required."]
        elif len(body) > BODY_MAX:
            errors["body"] = [f"Body may not be longer than {BODY_MAX} characters."]
        clean["body"] = body

    if present("university_name"):
        university = clean_str(payload.get("university_name")) or None
        if university and len(university) > UNIVERSITY_MAX:
            errors["university_name"] = [f"University name may not be longer than {UNIVERSITY_MAX} characters."]
        clean["university_name"] = university

    if present("year"):
        year = clean_str(payload.get("year")) or None
        if year and len(year) > YEAR_MAX:
            errors["year"] = [f"Year may not be longer than {YEAR_MAX} characters."]
        clean["year"] = year

    if present("expires_at"):
        try:
            expires_at = parse_date(payload.get("expires_at"), field="expires_at")
        except ValidationError as e:
            errors.update(e.errors)
        else:
            if expires_at is not None and expires_at <= today:
                errors["expires_at"] = ["Expiry date must be after today."]
            clean["expires_at"] = expires_at

    return clean, errors


def current_file(s: "Session", p: Publication) -> Attachment | None:
    atts = list_attachments(s, owner_type=OWNER_TYPE, owner_id=p.id)
    return atts[-1] if atts else None


def _has_file_clause():
    return exists().where(Attachment.owner_type == OWNER_TYPE, Attachment.owner_id == Publication.id)


def _apply_status(q: "Query", status: str, today: date) -> "Query":
    if status == "active":
        return q.filter(or_(Publication.expires_at.is_(None), Publication.expires_at >= today))
    if status == "expired":
        return q.filter(Publication.expires_at.is_not(None), Publication.expires_at < today)
    if status == "expiring_soon":
        return q.filter(
            Publication.expires_at.is_not(None),
            Publication.expires_at >= today,
            Publication.expires_at <= today + timedelta(days=EXPIRING_SOON_DAYS),
        )
    raise ValidationError({"status": [f"Must be one of: {', '.join(STATUS_FILTERS)}."]})


def list_publications(
    s: "Session",
    filters: dict,
    *,
    page: int = 1,
    per_page: int = 15,
    today: date | None = None,
) -> Page:
    today = today or date.today()
    q = soft_delete.query(s, Publication, soft_delete.parse_trashed(filters.get("trashed")))

    search = clean_str(filters.get("search"))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Publication.title.ilike(like), Publication.body.ilike(like)))

    title = clean_str(filters.get("title"))
    if title:
        q = q.filter(Publication.title.ilike(f"%{title}%"))

    status = clean_str(filters.get("status")).lower()
    if status:
        q = _apply_status(q, status, today)

    has_file = parse_bool(filters.get("has_file"))
    if has_file is True:
        q = q.filter(_has_file_clause())
    elif has_file is False:
        q = q.filter(~_has_file_clause())

    created_from = parse_date(filters.get("created_from"), field="created_from")
    if created_from:
        q = q.filter(Publication.created_at >= datetime.combine(created_from, datetime.min.time()))
    created_to = parse_date(filters.get("created_to"), field="created_to")
    if created_to:
        q = q.filter(Publication.created_at < datetime.combine(created_to + timedelta(days=1), datetime.min.time()))

    expires_from = parse_date(filters.get("expires_from"), field="expires_from")
    if expires_from:
        q = q.filter(Publication.expires_at >= expires_from)
    expires_to = parse_date(filters.get("expires_to"), field="expires_to")
    if expires_to:
        q = q.filter(Publication.expires_at <= expires_to)

    q = q.order_by(Publication.created_at.desc(), Publication.id.desc())
    return paginate(q, page=page, per_page=per_page)


def publications_by_status(
    s: "Session", status: str, *, page: int = 1, per_page: int = 15, today: date | None = None
) -> Page:
    q = _apply_status(soft_delete.query(s, Publication), clean_str(status).lower(), today or date.today())
    return paginate(q.order_by(Publication.created_at.desc(), Publication.id.desc()), page=page, per_page=per_page)


def get_publication(s: "Session", pub_id: int, *, trashed: "Trashed" = "without") -> Publication:
    return soft_delete.get_or_404(s, Publication, pub_id, trashed=trashed)


def create_publication(
    s: "Session",
    storage: "Storage",
    payload: dict,
    file: IncomingFile | None,
    actor: "User | None",
    *,
    policy: UploadPolicy,
    today: date | None = None,
) -> Publication:
    clean, errors = validate_publication_payload(payload, today=today)
    if errors:
        raise ValidationError(errors)
    if file is not None:
        validate_upload(file, policy)

    p = Publication(**clean)
    stamp_created(p, actor)
    s.add(p)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="publication.create",
        entity_type="Publication",
        entity_id=str(p.id),
        metadata={"title": p.title, "has_file": file is not None},
    )
    if file is not None:
        attach(s, storage, owner_type=OWNER_TYPE, owner_id=p.id, incoming=file, actor=actor, policy=policy)
    return p


def _replace_file(
    s: "Session",
    storage: "Storage",
    p: Publication,
    file: IncomingFile,
    actor: "User | None",
    policy: UploadPolicy,
) -> Attachment:
    """Store the new file first; earlier attachments go only once it is recorded."""
    old = list_attachments(s, owner_type=OWNER_TYPE, owner_id=p.id)
    new = attach(s, storage, owner_type=OWNER_TYPE, owner_id=p.id, incoming=file, actor=actor, policy=policy)
    try:
        for att in old:
            detach(s, storage, att, actor)
    except Exception:
        # Caller rolls back the new row; drop its bytes.
        storage.delete(new.storage_key)
        raise
    return new


def update_publication(
    s: "Session",
    storage: "Storage",
    pub_id: int,
    payload: dict,
    file: IncomingFile | None,
    actor: "User | None",
    *,
    policy: UploadPolicy,
    today: date | None = None,
) -> Publication:
    p = get_publication(s, pub_id)
    clean, errors = validate_publication_payload(payload, partial=True, today=today)
    if errors:
        raise ValidationError(errors)
    if file is not None:
        validate_upload(file, policy)

    changes: dict[str, dict[str, Any]] = {}
    for key, new in clean.items():
        old = getattr(p, key)
        if new != old:
            changes[key] = {"old": old, "new": new}
            setattr(p, key, new)
    stamp_updated(p, actor)
    record_event(
        s,
        actor=actor,
        action="publication.update",
        entity_type="Publication",
        entity_id=str(p.id),
        metadata={"changes": changes, "file_replaced": file is not None},
    )
    s.flush()

    if file is not None:
        _replace_file(s, storage, p, file, actor, policy)
    return p


def delete_publication(s: "Session", pub_id: int, actor: "User | None") -> Publication:
    return soft_delete.soft_delete(s, Publication, pub_id, actor)


def restore_publication(s: "Session", pub_id: int, actor: "User | None") -> Publication:
    return soft_delete.restore(s, Publication, pub_id, actor)


def force_delete_publication(s: "Session", storage: "Storage", pub_id: int, actor: "User | None") -> int:
    return soft_delete.force_delete(s, Publication, pub_id, actor, storage=storage)


def upload_file(
    s: "Session",
    storage: "Storage",
    pub_id: int,
    file: IncomingFile | None,
    actor: "User | None",
    *,
    policy: UploadPolicy,
) -> Publication:
    p = get_publication(s, pub_id)
    if file is None:
        raise ValidationError({"file": ["A file is required."]})
    validate_upload(file, policy)
    _replace_file(s, storage, p, file, actor, policy)
    stamp_updated(p, actor)
    s.flush()
    return p


def remove_file(s: "Session", storage: "Storage", pub_id: int, actor: "User | None") -> Publication:
    p = get_publication(s, pub_id)
    atts = list_attachments(s, owner_type=OWNER_TYPE, owner_id=p.id)
    for att in atts:
        detach(s, storage, att, actor)
    if atts:
        stamp_updated(p, actor)
        s.flush()
    return p


def open_file(
    s: "Session", storage: "Storage", pub_id: int, actor: "User | None"
) -> tuple[Attachment, "BinaryIO"]:
    p = get_publication(s, pub_id, trashed="with")
    att = current_file(s, p)
    if att is None:
        raise NotFound("This publication has no file.")
    fobj = open_attachment(storage, att)
    record_event(
        s,
        actor=actor,
        action="publication.download",
        entity_type="Attachment",
        entity_id=str(att.id),
        metadata={"publication_id": p.id, "filename": att.original_name},
    )
    return att, fobj


def duplicate_publication(s: "Session", storage: "Storage", pub_id: int, actor: "User | None") -> Publication:
    """
    Copy a publication's content and file under a new row owned by `actor`.
    The title is truncated so the suffixed copy still fits the column.
    """
    src = get_publication(s, pub_id)
    title = src.title[: TITLE_MAX - len(COPY_SUFFIX)] + COPY_SUFFIX
    dup = Publication(
        title=title,
        body=src.body,
        university_name=src.university_name,
        year=src.year,
        expires_at=src.expires_at,
    )
    stamp_created(dup, actor)
    s.add(dup)
    s.flush()

    src_file = current_file(s, src)
    if src_file is not None:
        copy_attachment(s, storage, src_file, owner_type=OWNER_TYPE, owner_id=dup.id, actor=actor)

    record_event(
        s,
        actor=actor,
        action="publication.duplicate",
        entity_type="Publication",
        entity_id=str(dup.id),
        metadata={"source_id": src.id, "file_copied": src_file is not None},
    )
    return dup


def _percent(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0


def publication_stats(s: "Session", *, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    base = soft_delete.query(s, Publication)
    total = base.count()
    active = _apply_status(base, "active", today).count()
    expired = _apply_status(base, "expired", today).count()
    expiring_soon = _apply_status(base, "expiring_soon", today).count()
    with_files = base.filter(_has_file_clause()).count()
    return {
        "total": total,
        "active": active,
        "expired": expired,
        "expiring_soon": expiring_soon,
        "with_files": with_files,
        "without_files": total - with_files,
        "percentage_active": _percent(active, total),
        "percentage_expired": _percent(expired, total),
        "percentage_with_files": _percent(with_files, total),
    }


def cleanup_expired_publications(
    s: "Session",
    storage: "Storage",
    *,
    days: int = CLEANUP_DEFAULT_DAYS,
    actor: "User | None" = None,
    today: date | None = None,
) -> int:
    """
    Purge publications (live or trashed) that expired more than `days` days ago.

    Each purge commits on its own; its bytes are gone once it runs.
    A failing purge is rolled back and re-raised; earlier ones stay committed.
    """
    cutoff = (today or date.today()) - timedelta(days=days)
    ids = [
        pid
        for (pid,) in soft_delete.query(s, Publication, "with")
        .filter(Publication.expires_at.is_not(None), Publication.expires_at < cutoff)
        .with_entities(Publication.id)
        .order_by(Publication.id.asc())
        .all()
    ]
    removed = 0
    for pid in ids:
        try:
            soft_delete.force_delete(s, Publication, pid, actor, storage=storage)
            s.commit()
        except Exception:
            s.rollback()
            logger.error("Expired publication cleanup stopped at publication %s after %s purge(s)", pid, removed)
            raise
        removed += 1
    logger.info("Expired publication cleanup removed %s row(s) older than %s", removed, cutoff.isoformat())
    return removed


def serialize_publication(s: "Session", p: Publication, *, today: date | None = None) -> dict[str, Any]:
    att = current_file(s, p)
    return {
        "id": p.id,
        "title": p.title,
        "body": p.body,
        "university_name": p.university_name,
        "year": p.year,
        "expires_at": iso(p.expires_at),
        "expiration_status": p.expiration_status(today),
        "days_until_expiration": p.days_until_expiration(today),
        "file": serialize_attachment(att) if att else None,
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
        "deleted_at": iso(p.deleted_at),
        "created_by_user_id": p.created_by_user_id,
        "updated_by_user_id": p.updated_by_user_id,
        "deleted_by_user_id": p.deleted_by_user_id,
    }
