from __future__ import annotations

from flask import Blueprint, request

from app.campus.db import db_session
from app.campus.modules.document_types import service
from app.campus.rbac import current_actor, require_permission
from app.campus.soft_delete import parse_trashed
from app.campus.utils import ok, page_args, request_payload

bp = Blueprint("document_types", __name__)


@bp.get("/")
@require_permission("document_types.view")
def list_document_types():
    s = db_session()
    page, per_page = page_args()
    result = service.list_document_types(
        s,
        search=request.args.get("search"),
        trashed=parse_trashed(request.args.get("trashed")),
        page=page,
        per_page=per_page,
    )
    return ok(
        [service.serialize_document_type(dt) for dt in result.items],
        "Document types listed.",
        pagination=result.meta(),
    )


@bp.post("/")
@require_permission("document_types.create")
def create_document_type():
    s = db_session()
    dt = service.create_document_type(s, request_payload(), current_actor())
    s.commit()
    return ok(service.serialize_document_type(dt), "Document type created.", 201)


@bp.get("/all")
@require_permission("document_types.view")
def all_document_types():
    s = db_session()
    return ok([service.serialize_document_type(dt) for dt in service.all_document_types(s)], "Document types listed.")


@bp.get("/stats")
@require_permission("document_types.view")
def document_type_stats():
    return ok(service.document_type_stats(db_session()), "Document type statistics.")


@bp.get("/trashed")
@require_permission("document_types.view")
def trashed_document_types():
    s = db_session()
    page, per_page = page_args()
    result = service.list_document_types(
        s, search=request.args.get("search"), trashed="only", page=page, per_page=per_page
    )
    return ok(
        [service.serialize_document_type(dt) for dt in result.items],
        "Trashed document types listed.",
        pagination=result.meta(),
    )


@bp.get("/<int:type_id>")
@require_permission("document_types.view")
def show_document_type(type_id: int):
    dt = service.get_document_type(db_session(), type_id)
    return ok(service.serialize_document_type(dt), "Document type found.")


@bp.put("/<int:type_id>")
@require_permission("document_types.edit")
def update_document_type(type_id: int):
    s = db_session()
    dt = service.update_document_type(s, type_id, request_payload(), current_actor())
    s.commit()
    return ok(service.serialize_document_type(dt), "Document type updated.")


@bp.delete("/<int:type_id>")
@require_permission("document_types.delete")
def delete_document_type(type_id: int):
    s = db_session()
    service.delete_document_type(s, type_id, current_actor())
    s.commit()
    return ok(message="Document type deleted.")


@bp.patch("/<int:type_id>/restore")
@require_permission("document_types.restore")
def restore_document_type(type_id: int):
    s = db_session()
    dt = service.restore_document_type(s, type_id, current_actor())
    s.commit()
    return ok(service.serialize_document_type(dt), "Document type restored.")


@bp.delete("/<int:type_id>/force")
@require_permission("document_types.force_delete")
def force_delete_document_type(type_id: int):
    s = db_session()
    service.force_delete_document_type(s, type_id, current_actor())
    s.commit()
    return ok(message="Document type permanently deleted.")
