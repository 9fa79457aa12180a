from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, BinaryIO

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from app.campus.audit import record_event
from app.campus.config import DEFAULT_UPLOAD_EXTENSIONS
from app.campus.errors import NotFound, StorageIOError, ValidationError
from app.campus.modules.attachments.models import Attachment

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.campus.models import User
    from app.campus.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadPolicy:
    max_bytes: int = 10 * 1024 * 1024
    allowed_extensions: tuple[str, ...] = tuple(DEFAULT_UPLOAD_EXTENSIONS.split(","))


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    content_type: str
    data: bytes


def policy_from_config(config: dict) -> UploadPolicy:
    exts = config.get("UPLOAD_ALLOWED_EXTENSIONS") or UploadPolicy.allowed_extensions
    return UploadPolicy(
        max_bytes=int(config.get("UPLOAD_MAX_BYTES") or UploadPolicy.max_bytes),
        allowed_extensions=tuple(exts),
    )


def incoming_from_upload(f: "FileStorage") -> IncomingFile:
    return IncomingFile(
        filename=f.filename or "",
        content_type=(f.mimetype or "application/octet-stream").strip(),
        data=f.read(),
    )


def file_digest_and_bytes(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def file_extension(filename: str) -> str:
    name = (filename or "").strip()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def validate_upload(incoming: IncomingFile, policy: UploadPolicy, *, field: str = "file") -> str:
    """
    Size and extension checks. Runs before any storage write.
    Returns the normalised extension.
    """
    errors: list[str] = []
    if not incoming.filename:
        errors.append("A file name is required.")
    ext = file_extension(incoming.filename)
    if ext not in policy.allowed_extensions:
        errors.append(f"File type not allowed: {ext or '(none)'}. Allowed: {', '.join(policy.allowed_extensions)}.")
    if len(incoming.data) > policy.max_bytes:
        errors.append(f"File too large. Maximum allowed: {policy.max_bytes // (1024 * 1024)}MB.")
    if errors:
        raise ValidationError({field: errors})
    return ext


def validate_uploads(files: list[IncomingFile], policy: UploadPolicy, *, field: str = "files") -> None:
    errors: dict[str, list[str]] = {}
    for i, f in enumerate(files):
        try:
            validate_upload(f, policy, field=f"{field}.{i}")
        except ValidationError as e:
            errors.update(e.errors)
    if errors:
        raise ValidationError(errors)


def build_storage_key(owner_type: str, owner_id: int, stored_name: str) -> str:
    return f"{owner_type}s/{owner_id}/{stored_name}"


def attach(
    s: "Session",
    storage: "Storage",
    *,
    owner_type: str,
    owner_id: int,
    incoming: IncomingFile,
    actor: "User | None",
    policy: UploadPolicy,
) -> Attachment:
    """
    Store bytes under the owner's prefix and record the metadata row.

    A failed byte write leaves no metadata behind; a failed metadata write
    removes the bytes that were just written.
    """
    ext = validate_upload(incoming, policy)
    stored_name = f"{uuid.uuid4().hex}.{ext}"
    storage_key = build_storage_key(owner_type, owner_id, stored_name)
    sha256, size_bytes = file_digest_and_bytes(incoming.data)

    storage.put_bytes(storage_key, incoming.data, content_type=incoming.content_type)

    att = Attachment(
        owner_type=owner_type,
        owner_id=owner_id,
        storage_key=storage_key,
        stored_name=stored_name,
        original_name=secure_filename(incoming.filename) or stored_name,
        content_type=incoming.content_type or "application/octet-stream",
        sha256=sha256,
        size_bytes=size_bytes,
        uploaded_by_user_id=actor.id if actor else None,
    )
    try:
        s.add(att)
        s.flush()
    except SQLAlchemyError as e:
        logger.error("Attachment metadata write failed for %s; removing stored bytes", storage_key)
        storage.delete(storage_key)
        raise StorageIOError("Could not record attachment metadata.", error=str(e)) from e

    record_event(
        s,
        actor=actor,
        action="attachment.upload",
        entity_type="Attachment",
        entity_id=str(att.id),
        metadata={
            "owner_type": owner_type,
            "owner_id": owner_id,
            "filename": att.original_name,
            "sha256": sha256,
            "size_bytes": size_bytes,
        },
    )
    return att


def attach_many(
    s: "Session",
    storage: "Storage",
    *,
    owner_type: str,
    owner_id: int,
    files: list[IncomingFile],
    actor: "User | None",
    policy: UploadPolicy,
) -> list[Attachment]:
    """
    All-or-nothing: if any file fails, bytes already written in this call are removed
    and the error propagates so the caller's transaction rolls back.
    """
    validate_uploads(files, policy)
    written: list[Attachment] = []
    try:
        for f in files:
            written.append(
                attach(s, storage, owner_type=owner_type, owner_id=owner_id, incoming=f, actor=actor, policy=policy)
            )
    except Exception:
        remove_stored_files(storage, [a.storage_key for a in written])
        raise
    return written


def list_attachments(s: "Session", *, owner_type: str, owner_id: int) -> list[Attachment]:
    return (
        s.query(Attachment)
        .filter(Attachment.owner_type == owner_type, Attachment.owner_id == owner_id)
        .order_by(Attachment.id.asc())
        .all()
    )


def get_attachment(s: "Session", *, owner_type: str, owner_id: int, attachment_id: int) -> Attachment:
    att = s.get(Attachment, attachment_id)
    if att is None or att.owner_type != owner_type or att.owner_id != owner_id:
        raise NotFound("Attachment not found.")
    return att


def open_attachment(storage: "Storage", att: Attachment) -> BinaryIO:
    # Storage raises NotFound when the bytes are gone.
    return storage.open(att.storage_key)


def detach(s: "Session", storage: "Storage", att: Attachment, actor: "User | None") -> None:
    """Remove the metadata row, then the bytes."""
    key = att.storage_key
    record_event(
        s,
        actor=actor,
        action="attachment.delete",
        entity_type="Attachment",
        entity_id=str(att.id),
        metadata={"owner_type": att.owner_type, "owner_id": att.owner_id, "filename": att.original_name},
    )
    s.delete(att)
    s.flush()
    storage.delete(key)


def delete_owner_rows(s: "Session", *, owner_type: str, owner_id: int) -> list[str]:
    """Delete every attachment row of an owner; returns the storage keys to remove."""
    rows = list_attachments(s, owner_type=owner_type, owner_id=owner_id)
    keys = [a.storage_key for a in rows]
    for a in rows:
        s.delete(a)
    return keys


def remove_stored_files(storage: "Storage", keys: list[str]) -> None:
    for key in keys:
        storage.delete(key)


def purge_owner(s: "Session", storage: "Storage", *, owner_type: str, owner_id: int) -> int:
    keys = delete_owner_rows(s, owner_type=owner_type, owner_id=owner_id)
    s.flush()
    remove_stored_files(storage, keys)
    return len(keys)


def copy_attachment(
    s: "Session",
    storage: "Storage",
    att: Attachment,
    *,
    owner_type: str,
    owner_id: int,
    actor: "User | None",
) -> Attachment:
    ext = file_extension(att.stored_name)
    stored_name = f"{uuid.uuid4().hex}.{ext}" if ext else uuid.uuid4().hex
    storage_key = build_storage_key(owner_type, owner_id, stored_name)
    storage.copy(att.storage_key, storage_key)

    clone = Attachment(
        owner_type=owner_type,
        owner_id=owner_id,
        storage_key=storage_key,
        stored_name=stored_name,
        original_name=att.original_name,
        content_type=att.content_type,
        sha256=att.sha256,
        size_bytes=att.size_bytes,
        uploaded_by_user_id=actor.id if actor else None,
    )
    try:
        s.add(clone)
        s.flush()
    except SQLAlchemyError as e:
        storage.delete(storage_key)
        raise StorageIOError("Could not record attachment metadata.", error=str(e)) from e
    return clone


def format_file_size(size_bytes: int | None) -> str:
    if not size_bytes:
        return "0 B"
    size = float(size_bytes)
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"


def serialize_attachment(att: Attachment) -> dict[str, Any]:
    return {
        "id": att.id,
        "owner_type": att.owner_type,
        "owner_id": att.owner_id,
        "stored_name": att.stored_name,
        "original_name": att.original_name,
        "content_type": att.content_type,
        "size_bytes": att.size_bytes,
        "size_formatted": format_file_size(att.size_bytes),
        "sha256": att.sha256,
        "uploaded_at": att.uploaded_at.isoformat() if att.uploaded_at else None,
        "uploaded_by_user_id": att.uploaded_by_user_id,
    }
