from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.campus.audit import record_event
from app.campus.blame import stamp_updated
from app.campus.errors import ValidationError
from app.campus.utils import clean_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.campus.models import User
    from app.campus.modules.documents.models import Document

DRAFT = "Draft"
PENDING = "Pending"
APPROVED = "Approved"
REJECTED = "Rejected"
ARCHIVED = "Archived"

STATUSES = (DRAFT, PENDING, APPROVED, REJECTED, ARCHIVED)
INITIAL_STATUS = DRAFT

COMMENT_MAX_LENGTH = 1000
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def normalize_status(value: str | None, *, field: str = "status") -> str:
    raw = (value or "").strip().lower()
    for status in STATUSES:
        if status.lower() == raw:
            return status
    raise ValidationError({field: [f"Invalid status. Must be one of: {', '.join(STATUSES)}"]})


def append_comment(log: str | None, comment: str, now: datetime) -> str:
    line = f"{now.strftime(TIMESTAMP_FORMAT)} - {comment}"
    if not log:
        return line
    return f"{log}\n\n{line}"


def change_status(
    s: "Session",
    document: "Document",
    target_status: str,
    comment: str | None,
    actor: "User | None",
    *,
    now: datetime | None = None,
) -> "Document":
    """
    Move a document to any status. Transitions are not guarded: every state
    reaches every other. A non-empty comment adds one timestamped entry to the log.
    """
    target = normalize_status(target_status)
    comment = clean_str(comment)
    if len(comment) > COMMENT_MAX_LENGTH:
        raise ValidationError({"comments": [f"May not be longer than {COMMENT_MAX_LENGTH} characters."]})

    now = now or datetime.utcnow()
    previous = document.status
    document.status = target
    if comment:
        document.comments = append_comment(document.comments, comment, now)
    stamp_updated(document, actor, now=now)

    record_event(
        s,
        actor=actor,
        action="document.status_change",
        entity_type="Document",
        entity_id=str(document.id),
        reason=comment[:512] or None,
        metadata={"from": previous, "to": target},
    )
    return document
