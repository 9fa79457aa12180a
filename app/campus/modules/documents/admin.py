from __future__ import annotations

from flask import Blueprint, current_app, request, send_file

from app.campus.db import db_session
from app.campus.modules.attachments.service import incoming_from_upload, policy_from_config, serialize_attachment
from app.campus.modules.documents import service, workflow
from app.campus.rbac import current_actor, require_permission
from app.campus.storage import storage_from_config
from app.campus.utils import ok, page_args, request_payload

bp = Blueprint("documents", __name__)


def _uploaded_files() -> list:
    return [incoming_from_upload(f) for f in request.files.getlist("files") if f and f.filename]


def _storage():
    return storage_from_config(current_app.config)


@bp.get("/")
@require_permission("documents.view")
def list_documents():
    s = db_session()
    page, per_page = page_args()
    result = service.list_documents(s, request.args.to_dict(), page=page, per_page=per_page)
    return ok(
        [service.serialize_document(s, d, include_files=False) for d in result.items],
        "Documents listed.",
        pagination=result.meta(),
    )


@bp.post("/")
@require_permission("documents.create")
def create_document():
    s = db_session()
    u = current_actor()
    d = service.create_document(
        s,
        _storage(),
        request_payload(),
        _uploaded_files(),
        u,
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok(service.serialize_document(s, d), "Document created.", 201)


@bp.get("/stats")
@require_permission("documents.view")
def document_stats():
    s = db_session()
    return ok(service.document_stats(s, request.args.to_dict()), "Document statistics.")


@bp.get("/statuses")
@require_permission("documents.view")
def document_statuses():
    return ok(list(workflow.STATUSES), "Document statuses.")


@bp.get("/search")
@require_permission("documents.view")
def search_documents():
    s = db_session()
    term = request.args.get("query") or request.args.get("q") or ""
    docs = service.search_documents(s, term, request.args.to_dict())
    return ok([service.serialize_document(s, d, include_files=False) for d in docs], "Search complete.")


@bp.get("/status/<status>")
@require_permission("documents.view")
def documents_by_status(status: str):
    s = db_session()
    docs = service.documents_by_status(s, status, request.args.to_dict())
    return ok([service.serialize_document(s, d, include_files=False) for d in docs], "Documents by status.")


@bp.get("/<int:doc_id>")
@require_permission("documents.view")
def show_document(doc_id: int):
    s = db_session()
    d = service.get_document(s, doc_id)
    return ok(service.serialize_document(s, d), "Document found.")


@bp.put("/<int:doc_id>")
@require_permission("documents.edit")
def update_document(doc_id: int):
    s = db_session()
    u = current_actor()
    d = service.update_document(
        s,
        _storage(),
        doc_id,
        request_payload(),
        _uploaded_files(),
        u,
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok(service.serialize_document(s, d), "Document updated.")


@bp.delete("/<int:doc_id>")
@require_permission("documents.delete")
def delete_document(doc_id: int):
    s = db_session()
    service.delete_document(s, doc_id, current_actor())
    s.commit()
    return ok(message="Document deleted.")


@bp.patch("/<int:doc_id>/restore")
@require_permission("documents.restore")
def restore_document(doc_id: int):
    s = db_session()
    d = service.restore_document(s, doc_id, current_actor())
    s.commit()
    return ok(service.serialize_document(s, d), "Document restored.")


@bp.delete("/<int:doc_id>/force")
@require_permission("documents.force_delete")
def force_delete_document(doc_id: int):
    s = db_session()
    purged = service.force_delete_document(s, _storage(), doc_id, current_actor())
    s.commit()
    return ok({"files_removed": purged}, "Document permanently deleted.")


@bp.patch("/<int:doc_id>/change-status")
@require_permission("documents.status")
def change_status(doc_id: int):
    s = db_session()
    payload = request_payload()
    d = service.change_document_status(
        s,
        doc_id,
        str(payload.get("status") or payload.get("status_id") or ""),
        payload.get("comments"),
        current_actor(),
    )
    s.commit()
    return ok(service.serialize_document(s, d), "Document status changed.")


@bp.post("/<int:doc_id>/files")
@require_permission("documents.edit")
def upload_files(doc_id: int):
    s = db_session()
    atts = service.upload_files(
        s,
        _storage(),
        doc_id,
        _uploaded_files(),
        current_actor(),
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok([serialize_attachment(a) for a in atts], "Files uploaded.")


@bp.delete("/<int:doc_id>/files/<int:file_id>")
@require_permission("documents.edit")
def delete_file(doc_id: int, file_id: int):
    s = db_session()
    service.delete_file(s, _storage(), doc_id, file_id, current_actor())
    s.commit()
    return ok(message="File deleted.")


@bp.get("/<int:doc_id>/files/<int:file_id>/download")
@require_permission("documents.view")
def download_file(doc_id: int, file_id: int):
    s = db_session()
    att, fobj = service.open_file(s, _storage(), doc_id, file_id, current_actor())
    s.commit()
    return send_file(
        fobj,
        mimetype=att.content_type,
        as_attachment=True,
        download_name=att.original_name,
        max_age=0,
    )
