"""
Ownership stamping for rows carrying BlameMixin / SoftDeleteMixin columns.

The acting user is always passed in. `None` means "no authenticated actor":
the identity columns are then left alone, which is accepted rather than an
error (seed scripts and background jobs run without one).
"""

from __future__ import annotations

from datetime import datetime

from app.campus.models import BlameMixin, SoftDeleteMixin, User


def stamp_created(entity: BlameMixin, actor: User | None, *, now: datetime | None = None) -> None:
    now = now or datetime.utcnow()
    entity.created_at = now
    entity.updated_at = now
    if actor is None:
        return
    # created_by is write-once.
    if entity.created_by_user_id is None:
        entity.created_by_user_id = actor.id
    entity.updated_by_user_id = actor.id


def stamp_updated(entity: BlameMixin, actor: User | None, *, now: datetime | None = None) -> None:
    entity.updated_at = now or datetime.utcnow()
    if actor is not None:
        entity.updated_by_user_id = actor.id


def stamp_deleted(entity: SoftDeleteMixin, actor: User | None, *, now: datetime | None = None) -> None:
    entity.deleted_by_user_id = actor.id if actor is not None else None
    entity.deleted_at = now or datetime.utcnow()


def clear_deleted(entity: SoftDeleteMixin) -> None:
    entity.deleted_at = None
    entity.deleted_by_user_id = None
