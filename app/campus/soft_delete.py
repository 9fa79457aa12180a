"""
Generic soft-delete store for models carrying SoftDeleteMixin.

Default reads hide deleted rows; callers opt into `trashed="with"` (everything)
or `trashed="only"` (deleted rows). Purging a model that owns attachments
(`attachment_owner_type` set on the class) also purges those attachments.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, TypeVar

from sqlalchemy.orm import Query, Session

from app.campus.audit import record_event
from app.campus.blame import clear_deleted, stamp_deleted, stamp_updated
from app.campus.errors import NotFound, ValidationError
from app.campus.models import SoftDeleteMixin, User

if TYPE_CHECKING:
    from app.campus.storage import Storage

logger = logging.getLogger(__name__)

Trashed = Literal["without", "with", "only"]
TRASHED_MODES: tuple[str, ...] = ("without", "with", "only")

T = TypeVar("T", bound=SoftDeleteMixin)


def parse_trashed(raw: str | None) -> Trashed:
    """
    Map a query-string value onto a trashed mode.
    Also accepts the `status=active|inactive` spelling used by list filters.
    """
    value = (raw or "").strip().lower()
    if not value or value in ("without", "active"):
        return "without"
    if value in ("with", "all"):
        return "with"
    if value in ("only", "inactive", "trashed"):
        return "only"
    raise ValidationError({"trashed": [f"Must be one of: {', '.join(TRASHED_MODES)}."]})


def apply_trashed(q: Query, model: type[T], trashed: Trashed = "without") -> Query:
    if trashed == "without":
        return q.filter(model.deleted_at.is_(None))
    if trashed == "only":
        return q.filter(model.deleted_at.is_not(None))
    return q


def query(s: Session, model: type[T], trashed: Trashed = "without") -> Query:
    return apply_trashed(s.query(model), model, trashed)


def get_or_404(s: Session, model: type[T], entity_id: int, *, trashed: Trashed = "without") -> T:
    obj = s.get(model, entity_id)
    if obj is None:
        raise NotFound(f"{model.__name__} {entity_id} not found.")
    if trashed == "without" and obj.is_deleted:
        raise NotFound(f"{model.__name__} {entity_id} not found.")
    if trashed == "only" and not obj.is_deleted:
        raise NotFound(f"{model.__name__} {entity_id} is not deleted.")
    return obj


def soft_delete(s: Session, model: type[T], entity_id: int, actor: User | None) -> T:
    obj = get_or_404(s, model, entity_id)
    stamp_deleted(obj, actor)
    s.flush()
    record_event(
        s,
        actor=actor,
        action=f"{_action_prefix(model)}.delete",
        entity_type=model.__name__,
        entity_id=str(obj.id),  # type: ignore[attr-defined]
    )
    return obj


def restore(s: Session, model: type[T], entity_id: int, actor: User | None) -> T:
    obj = get_or_404(s, model, entity_id, trashed="only")
    clear_deleted(obj)
    stamp_updated(obj, actor)  # type: ignore[arg-type]
    s.flush()
    record_event(
        s,
        actor=actor,
        action=f"{_action_prefix(model)}.restore",
        entity_type=model.__name__,
        entity_id=str(obj.id),  # type: ignore[attr-defined]
    )
    return obj


def force_delete(
    s: Session,
    model: type[T],
    entity_id: int,
    actor: User | None,
    *,
    storage: "Storage | None" = None,
) -> int:
    """
    Permanently remove a row (deleted or not) and any attachments it owns.
    Returns the number of attachments purged.
    """
    from app.campus.modules.attachments.service import delete_owner_rows, remove_stored_files

    obj = get_or_404(s, model, entity_id, trashed="with")
    keys: list[str] = []
    owner_type = getattr(model, "attachment_owner_type", None)
    if owner_type:
        if storage is None:
            raise RuntimeError(f"{model.__name__} owns attachments; force_delete needs a storage backend.")
        keys = delete_owner_rows(s, owner_type=owner_type, owner_id=obj.id)  # type: ignore[attr-defined]

    record_event(
        s,
        actor=actor,
        action=f"{_action_prefix(model)}.force_delete",
        entity_type=model.__name__,
        entity_id=str(obj.id),  # type: ignore[attr-defined]
        metadata={"attachments_purged": len(keys)} if owner_type else None,
    )
    s.delete(obj)
    s.flush()
    # Rows are gone from this transaction; bytes follow.
    if keys and storage is not None:
        remove_stored_files(storage, keys)
    logger.info("Purged %s %s (attachments=%s)", model.__name__, entity_id, len(keys))
    return len(keys)


def _action_prefix(model: type) -> str:
    return getattr(model, "audit_prefix", None) or model.__name__.lower()
