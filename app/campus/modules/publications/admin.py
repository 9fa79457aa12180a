from __future__ import annotations

from flask import Blueprint, current_app, request, send_file

from app.campus.db import db_session
from app.campus.modules.attachments.service import incoming_from_upload, policy_from_config
from app.campus.modules.publications import service
from app.campus.rbac import current_actor, require_permission
from app.campus.storage import storage_from_config
from app.campus.utils import ok, page_args, request_payload

bp = Blueprint("publications", __name__)


def _uploaded_file():
    f = request.files.get("file")
    if not f or not f.filename:
        return None
    return incoming_from_upload(f)


def _storage():
    return storage_from_config(current_app.config)


@bp.get("/")
@require_permission("publications.view")
def list_publications():
    s = db_session()
    page, per_page = page_args()
    result = service.list_publications(s, request.args.to_dict(), page=page, per_page=per_page)
    return ok(
        [service.serialize_publication(s, p) for p in result.items],
        "Publications listed.",
        pagination=result.meta(),
    )


@bp.post("/")
@require_permission("publications.create")
def create_publication():
    s = db_session()
    p = service.create_publication(
        s,
        _storage(),
        request_payload(),
        _uploaded_file(),
        current_actor(),
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok(service.serialize_publication(s, p), "Publication created.", 201)


@bp.get("/stats")
@require_permission("publications.view")
def publication_stats():
    return ok(service.publication_stats(db_session()), "Publication statistics.")


@bp.get("/status/<status>")
@require_permission("publications.view")
def publications_by_status(status: str):
    s = db_session()
    page, per_page = page_args()
    result = service.publications_by_status(s, status, page=page, per_page=per_page)
    return ok(
        [service.serialize_publication(s, p) for p in result.items],
        "Publications by status.",
        pagination=result.meta(),
    )


@bp.get("/<int:pub_id>")
@require_permission("publications.view")
def show_publication(pub_id: int):
    s = db_session()
    return ok(service.serialize_publication(s, service.get_publication(s, pub_id)), "Publication found.")


@bp.put("/<int:pub_id>")
@require_permission("publications.edit")
def update_publication(pub_id: int):
    s = db_session()
    p = service.update_publication(
        s,
        _storage(),
        pub_id,
        request_payload(),
        _uploaded_file(),
        current_actor(),
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok(service.serialize_publication(s, p), "Publication updated.")


@bp.delete("/<int:pub_id>")
@require_permission("publications.delete")
def delete_publication(pub_id: int):
    s = db_session()
    service.delete_publication(s, pub_id, current_actor())
    s.commit()
    return ok(message="Publication deleted.")


@bp.patch("/<int:pub_id>/restore")
@require_permission("publications.restore")
def restore_publication(pub_id: int):
    s = db_session()
    p = service.restore_publication(s, pub_id, current_actor())
    s.commit()
    return ok(service.serialize_publication(s, p), "Publication restored.")


@bp.delete("/<int:pub_id>/force")
@require_permission("publications.force_delete")
def force_delete_publication(pub_id: int):
    s = db_session()
    purged = service.force_delete_publication(s, _storage(), pub_id, current_actor())
    s.commit()
    return ok({"files_removed": purged}, "Publication permanently deleted.")


@bp.post("/<int:pub_id>/duplicate")
@require_permission("publications.create")
def duplicate_publication(pub_id: int):
    s = db_session()
    p = service.duplicate_publication(s, _storage(), pub_id, current_actor())
    s.commit()
    return ok(service.serialize_publication(s, p), "Publication duplicated.", 201)


@bp.post("/<int:pub_id>/upload")
@require_permission("publications.edit")
def upload_file(pub_id: int):
    s = db_session()
    p = service.upload_file(
        s,
        _storage(),
        pub_id,
        _uploaded_file(),
        current_actor(),
        policy=policy_from_config(current_app.config),
    )
    s.commit()
    return ok(service.serialize_publication(s, p), "File uploaded.")


@bp.delete("/<int:pub_id>/file")
@require_permission("publications.edit")
def remove_file(pub_id: int):
    s = db_session()
    p = service.remove_file(s, _storage(), pub_id, current_actor())
    s.commit()
    return ok(service.serialize_publication(s, p), "File removed.")


@bp.get("/<int:pub_id>/download")
@require_permission("publications.view")
def download_file(pub_id: int):
    s = db_session()
    att, fobj = service.open_file(s, _storage(), pub_id, current_actor())
    s.commit()
    return send_file(
        fobj,
        mimetype=att.content_type,
        as_attachment=True,
        download_name=att.original_name,
        max_age=0,
    )
