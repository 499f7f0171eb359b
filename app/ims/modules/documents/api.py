from __future__ import annotations

from flask import Blueprint, g, jsonify, request, send_file

from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.documents import service
from app.ims.rbac import require_permission
from app.ims.utils import clean_str, parse_date

bp = Blueprint("documents", __name__)
files_bp = Blueprint("files", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.get("")
@require_permission("docs.view")
def list_documents():
    status = (request.args.get("status") or "").strip() or None
    if status and status != "all" and not service.is_valid_status(status):
        raise ValidationError(f"Unknown status: {status}")
    s = db_session()
    docs = service.list_documents(
        s,
        status=status,
        search=(request.args.get("search") or "").strip() or None,
        department=(request.args.get("department") or "").strip() or None,
    )
    return jsonify([service.document_to_dict(d) for d in docs])


@bp.post("")
@require_permission("docs.create")
def create_document():
    s = db_session()
    d = service.create_document(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.document_to_dict(d)), 201


@bp.get("/stats")
@require_permission("docs.view")
def dashboard_stats():
    return jsonify(service.dashboard_stats(db_session()))


@bp.get("/reports/stats")
@require_permission("docs.reports")
def report_stats():
    return jsonify(service.report_stats(db_session()))


@bp.get("/department-stats")
@require_permission("docs.view")
def department_stats():
    return jsonify(service.department_stats(db_session()))


@bp.get("/<int:doc_id>")
@require_permission("docs.view")
def get_document(doc_id: int):
    s = db_session()
    d = service.get_document(s, doc_id)
    out = service.document_to_dict(d)
    out["versions"] = [service.version_to_dict(v) for v in d.versions]
    out["audit_events"] = [service.event_to_dict(ev) for ev in service.document_events(s, d.id)]
    return jsonify(out)


@bp.put("/<int:doc_id>")
@require_permission("docs.edit")
def update_document(doc_id: int):
    s = db_session()
    d = service.update_document(s, service.get_document(s, doc_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.document_to_dict(d))


@bp.delete("/<int:doc_id>")
@require_permission("docs.delete")
def delete_document(doc_id: int):
    s = db_session()
    service.delete_document(s, service.get_document(s, doc_id), g.current_user)
    s.commit()
    return jsonify({"message": "Document deleted successfully"})


@bp.post("/<int:doc_id>/submit")
@require_permission("docs.submit")
def submit_document(doc_id: int):
    s = db_session()
    d = service.submit_document(s, service.get_document(s, doc_id), g.current_user)
    s.commit()
    return jsonify(service.document_to_dict(d))


@bp.post("/<int:doc_id>/approve")
@require_permission("docs.review")
def approve_document(doc_id: int):
    s = db_session()
    comments = clean_str(_body().get("comments"))
    d = service.approve_document(s, service.get_document(s, doc_id), g.current_user, comments)
    s.commit()
    return jsonify(service.document_to_dict(d))


@bp.post("/<int:doc_id>/reject")
@require_permission("docs.review")
def reject_document(doc_id: int):
    s = db_session()
    comments = clean_str(_body().get("comments"))
    d = service.reject_document(s, service.get_document(s, doc_id), g.current_user, comments)
    s.commit()
    return jsonify(service.document_to_dict(d))


@bp.post("/<int:doc_id>/archive")
@require_permission("docs.archive")
def archive_document(doc_id: int):
    s = db_session()
    d = service.archive_document(s, service.get_document(s, doc_id), g.current_user)
    s.commit()
    return jsonify(service.document_to_dict(d))


@bp.post("/<int:doc_id>/versions")
@require_permission("docs.edit")
def upload_version(doc_id: int):
    s = db_session()
    d = service.get_document(s, doc_id)

    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file uploaded.")
    try:
        effective_date = parse_date(request.form.get("effective_date"))
    except ValueError as e:
        raise ValidationError("effective_date must be a YYYY-MM-DD date.") from e

    v = service.upload_version(
        s,
        d,
        file_bytes=f.read(),
        filename=f.filename,
        content_type=f.mimetype,
        user=g.current_user,
        change_notes=request.form.get("change_notes"),
        effective_date=effective_date,
    )
    s.commit()
    return jsonify(service.version_to_dict(v)), 201


@bp.get("/<int:doc_id>/versions")
@require_permission("docs.view")
def list_versions(doc_id: int):
    s = db_session()
    d = service.get_document(s, doc_id)
    return jsonify([service.version_to_dict(v) for v in service.visible_versions(s, d, g.current_user)])


def _serve(version_id: int, *, as_attachment: bool):
    s = db_session()
    v = service.get_version(s, version_id)
    fobj = service.open_version(s, v, g.current_user, action="download" if as_attachment else "preview")
    s.commit()
    return send_file(fobj, mimetype=v.content_type, as_attachment=as_attachment, download_name=v.filename)


@files_bp.get("/<int:version_id>/download")
@require_permission("docs.download")
def download(version_id: int):
    return _serve(version_id, as_attachment=True)


@files_bp.get("/<int:version_id>/preview")
@require_permission("docs.download")
def preview(version_id: int):
    return _serve(version_id, as_attachment=False)
