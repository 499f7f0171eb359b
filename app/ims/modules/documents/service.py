from __future__ import annotations

import mimetypes
from collections import Counter
from datetime import date
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_, select

from app.ims.audit import record_event
from app.ims.errors import NotFoundError, ValidationError, WorkflowError, raise_if_errors
from app.ims.models import AuditEvent
from app.ims.modules.documents.models import (
    DOCUMENT_STATUSES,
    STATUS_APPROVED,
    STATUS_ARCHIVED,
    STATUS_DRAFT,
    STATUS_REJECTED,
    STATUS_UNDER_REVIEW,
    Document,
    DocumentVersion,
)
from app.ims.modules.notifications.service import notify
from app.ims.rbac import user_has_permission
from app.ims.storage import build_storage_key, file_digest_and_bytes, sanitize_upload_filename, storage_from_config
from app.ims.utils import clean_str, iso, parse_date, parse_int, text_value, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

SOP_TYPES = frozenset({"policy", "procedure", "work_instruction", "sop"})
FORMAT_TYPES = frozenset({"form", "record", "format"})


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def version_to_dict(v: DocumentVersion) -> dict[str, Any]:
    return {
        "id": v.id,
        "document_id": v.document_id,
        "version_number": v.version_number,
        "filename": v.filename,
        "content_type": v.content_type,
        "size_bytes": v.size_bytes,
        "sha256": v.sha256,
        "change_notes": v.change_notes,
        "effective_date": iso(v.effective_date),
        "uploaded_by": v.uploaded_by.full_name if v.uploaded_by else None,
        "created_at": iso(v.created_at),
    }


def event_to_dict(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "action": ev.action,
        "details": ev.details,
        "user": ev.actor.full_name if ev.actor else (ev.actor_user_email or "System"),
        "created_at": iso(ev.created_at),
    }


def document_to_dict(d: Document) -> dict[str, Any]:
    return {
        "id": d.id,
        "title": d.title,
        "document_number": d.document_number,
        "description": d.description,
        "type": d.type,
        "departments": list(d.departments or []),
        "tags": list(d.tags or []),
        "status": d.status,
        "effective_date": iso(d.effective_date),
        "review_date": iso(d.review_date),
        "expiry_date": iso(d.expiry_date),
        "owner_id": d.owner_id,
        "owner": d.owner.full_name if d.owner else None,
        "current_version_id": d.current_version_id,
        "version": d.version,
        "created_at": iso(d.created_at),
        "updated_at": iso(d.updated_at),
    }


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _str_list(value: Any, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list.")
    return [str(v).strip() for v in value if str(v).strip()]


def _date(payload: dict, field: str) -> date | None:
    try:
        return parse_date(payload.get(field))
    except ValueError as e:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date.") from e


def _check_number_free(s: "Session", number: str | None, exclude_id: int | None = None) -> None:
    if not number:
        return
    q = select(Document.id).where(Document.document_number == number)
    if exclude_id is not None:
        q = q.where(Document.id != exclude_id)
    if s.scalar(q) is not None:
        raise ValidationError(f"Document number {number} already exists.")


def validate_document_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "title" in payload:
        if not text_value(payload.get("title")):
            errors.append("Title is required.")
    if "version" in payload and payload.get("version") not in (None, ""):
        try:
            if parse_int(payload.get("version")) < 1:
                errors.append("version must be a positive integer.")
        except (TypeError, ValueError):
            errors.append("version must be a positive integer.")
    return errors


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_document(s: "Session", doc_id: int) -> Document:
    d = s.get(Document, doc_id)
    if not d:
        raise NotFoundError("Document not found")
    return d


def get_version(s: "Session", version_id: int) -> DocumentVersion:
    v = s.get(DocumentVersion, version_id)
    if not v:
        raise NotFoundError("Version not found")
    return v


def list_documents(
    s: "Session",
    *,
    status: str | None = None,
    search: str | None = None,
    department: str | None = None,
) -> list[Document]:
    q = select(Document).order_by(Document.updated_at.desc(), Document.id.desc())
    if status and status != "all":
        q = q.where(Document.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.where(or_(Document.title.ilike(like), Document.description.ilike(like)))
    docs = list(s.scalars(q))
    if department and department != "all":
        docs = [d for d in docs if department in (d.departments or [])]
    return docs


def document_events(s: "Session", doc_id: int) -> list[AuditEvent]:
    q = (
        select(AuditEvent)
        .where(AuditEvent.entity_type == "Document", AuditEvent.entity_id == str(doc_id))
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
    )
    return list(s.scalars(q))


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------


def _log(s: "Session", user: "User | None", action: str, d: Document, details: str, **metadata: Any) -> None:
    record_event(
        s,
        actor=user,
        action=f"document.{action}",
        entity_type="Document",
        entity_id=d.id,
        details=details,
        metadata={"title": d.title, "document_number": d.document_number, **metadata},
    )


def create_document(s: "Session", payload: dict, user: "User") -> Document:
    raise_if_errors(validate_document_payload(payload))
    number = clean_str(payload.get("document_number"))
    _check_number_free(s, number)

    d = Document(
        title=text_value(payload["title"]),
        document_number=number,
        description=clean_str(payload.get("description")),
        type=clean_str(payload.get("type")) or "other",
        departments=_str_list(payload.get("departments"), "departments"),
        tags=_str_list(payload.get("tags"), "tags"),
        status=STATUS_DRAFT,
        effective_date=_date(payload, "effective_date"),
        review_date=_date(payload, "review_date"),
        expiry_date=_date(payload, "expiry_date"),
        owner_id=user.id,
        version=parse_int(payload.get("version"), 1),
    )
    s.add(d)
    s.flush()

    _log(s, user, "create", d, "Document created")
    notify(s, user.id, f'Document "{d.title}" created successfully.', d.id)
    return d


_EDITABLE_TEXT = ("title", "description", "type")
_EDITABLE_DATES = ("effective_date", "review_date", "expiry_date")


def update_document(s: "Session", d: Document, payload: dict, user: "User") -> Document:
    """Non-drafts are locked unless the caller holds docs.manage."""
    if d.status != STATUS_DRAFT and not user_has_permission(user, "docs.manage"):
        raise WorkflowError("Only draft documents can be edited", status_code=403)
    raise_if_errors(validate_document_payload(payload, partial=True))

    changes: dict[str, Any] = {}

    def _set(field: str, new: Any) -> None:
        old = getattr(d, field)
        if new != old:
            changes[field] = {"old": iso(old) if isinstance(old, date) else old, "new": iso(new) if isinstance(new, date) else new}
            setattr(d, field, new)

    for field in _EDITABLE_TEXT:
        if field in payload:
            new = clean_str(payload.get(field))
            if field == "type":
                new = new or "other"
            _set(field, new)
    if "document_number" in payload:
        number = clean_str(payload.get("document_number"))
        _check_number_free(s, number, exclude_id=d.id)
        _set("document_number", number)
    for field in ("departments", "tags"):
        if field in payload:
            _set(field, _str_list(payload.get(field), field))
    for field in _EDITABLE_DATES:
        if field in payload:
            _set(field, _date(payload, field))

    d.updated_at = utcnow()
    _log(s, user, "update", d, "Document updated", changes=changes)
    return d


def delete_document(s: "Session", d: Document, user: "User") -> None:
    """Removes the document, its versions and stored files. Audit events are kept."""
    storage = storage_from_config(current_app.config)
    keys = [v.storage_key for v in d.versions]

    _log(s, user, "delete", d, f'Document "{d.title}" deleted', versions=len(keys))
    d.current_version_id = None
    s.flush()
    s.delete(d)
    s.flush()

    for key in keys:
        storage.delete(key)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


def submit_document(s: "Session", d: Document, user: "User") -> Document:
    if d.status != STATUS_DRAFT:
        raise WorkflowError("Only draft documents can be submitted", status_code=403)
    d.status = STATUS_UNDER_REVIEW
    d.updated_at = utcnow()
    _log(s, user, "submit", d, "Document submitted for review")
    notify(s, d.owner_id, f'Your document "{d.title}" has been submitted for review.', d.id)
    return d


def approve_document(s: "Session", d: Document, user: "User", comments: str | None = None) -> Document:
    if d.status != STATUS_UNDER_REVIEW:
        raise WorkflowError("Only documents under review can be approved", status_code=403)
    d.status = STATUS_APPROVED
    d.updated_at = utcnow()
    _log(s, user, "approve", d, comments or "Document approved")
    notify(s, d.owner_id, f'Good news! Your document "{d.title}" has been approved.', d.id)
    return d


def reject_document(s: "Session", d: Document, user: "User", comments: str | None = None) -> Document:
    if d.status != STATUS_UNDER_REVIEW:
        raise WorkflowError("Only documents under review can be rejected", status_code=403)
    d.status = STATUS_REJECTED
    d.updated_at = utcnow()
    _log(s, user, "reject", d, comments or "Document rejected")
    notify(s, d.owner_id, f'Your document "{d.title}" has been rejected.', d.id)
    return d


def archive_document(s: "Session", d: Document, user: "User") -> Document:
    if d.status not in (STATUS_APPROVED, STATUS_REJECTED):
        raise WorkflowError("Only approved or rejected documents can be archived", status_code=403)
    d.status = STATUS_ARCHIVED
    d.updated_at = utcnow()
    _log(s, user, "archive", d, "Document archived")
    return d


def revert_expired_reviews(s: "Session", today: date | None = None) -> list[int]:
    """
    Daily job: approved documents whose review date is today or earlier go back to draft.
    Returns the ids of the documents that were reverted.
    """
    today = today or date.today()
    q = select(Document).where(
        Document.status == STATUS_APPROVED,
        Document.review_date.is_not(None),
        Document.review_date <= today,
    )
    reverted = []
    for d in s.scalars(q):
        d.status = STATUS_DRAFT
        d.updated_at = utcnow()
        _log(
            s,
            None,
            "update",
            d,
            f"Document next review date {d.review_date.isoformat()} passed. Automatically reverted to draft for review.",
            owner_id=d.owner_id,
        )
        notify(s, d.owner_id, f'Action Required: Review date for "{d.title}" has passed. Document reverted to draft.', d.id)
        reverted.append(d.id)
    return reverted


# ---------------------------------------------------------------------------
# Versions / files
# ---------------------------------------------------------------------------


def next_version_number(existing: list[int], initial: int | None) -> int:
    """First upload takes the document's declared version (default 1); later uploads are max + 1."""
    if existing:
        return max(existing) + 1
    return initial or 1


def upload_version(
    s: "Session",
    d: Document,
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
    change_notes: str | None = None,
    effective_date: date | None = None,
) -> DocumentVersion:
    if d.status == STATUS_ARCHIVED:
        raise WorkflowError("Archived documents cannot receive new versions", status_code=403)
    if not file_bytes:
        raise ValidationError("File is empty.")

    number = next_version_number([v.version_number for v in d.versions], d.version)
    safe_name = sanitize_upload_filename(filename)
    sha256, size_bytes = file_digest_and_bytes(file_bytes)
    ctype = content_type or mimetypes.guess_type(safe_name)[0] or "application/octet-stream"
    storage_key = build_storage_key("documents", f"{d.id}/v{number}", safe_name)

    storage = storage_from_config(current_app.config)
    storage.put_bytes(storage_key, file_bytes, content_type=ctype)

    v = DocumentVersion(
        document_id=d.id,
        version_number=number,
        storage_key=storage_key,
        filename=safe_name,
        content_type=ctype,
        size_bytes=size_bytes,
        sha256=sha256,
        change_notes=clean_str(change_notes),
        effective_date=effective_date,
        uploaded_by_user_id=user.id,
    )
    s.add(v)
    s.flush()

    d.current_version_id = v.id
    d.version = number
    d.status = STATUS_DRAFT
    if effective_date:
        d.effective_date = effective_date
    d.updated_at = utcnow()

    _log(
        s,
        user,
        "upload",
        d,
        f"Version {number} uploaded ({safe_name})",
        version=number,
        sha256=sha256,
        size_bytes=size_bytes,
    )
    return v


def visible_versions(s: "Session", d: Document, user: "User") -> list[DocumentVersion]:
    """Document managers see full history; everyone else only the latest version."""
    versions = list(
        s.scalars(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == d.id)
            .order_by(DocumentVersion.version_number.desc())
        )
    )
    if user_has_permission(user, "docs.manage"):
        return versions
    return versions[:1]


def open_version(s: "Session", v: DocumentVersion, user: "User", *, action: str):
    storage = storage_from_config(current_app.config)
    fobj = storage.open(v.storage_key)
    verb = "Downloaded" if action == "download" else "Previewed"
    _log(s, user, action, v.document, f"{verb} version {v.version_number} ({v.filename})", version=v.version_number)
    return fobj


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def dashboard_stats(s: "Session") -> dict[str, Any]:
    rows = dict(s.execute(select(Document.status, func.count()).group_by(Document.status)).all())
    return {
        "total": sum(rows.values()),
        "by_status": {
            "draft": rows.get(STATUS_DRAFT, 0),
            "under_review": rows.get(STATUS_UNDER_REVIEW, 0),
            "approved": rows.get(STATUS_APPROVED, 0),
            "rejected": rows.get(STATUS_REJECTED, 0),
        },
    }


def _name_values(counter: Counter) -> list[dict[str, Any]]:
    return [{"name": k, "value": v} for k, v in counter.items()]


def report_stats(s: "Session") -> dict[str, Any]:
    docs = list(s.scalars(select(Document)))
    by_department: Counter = Counter()
    for d in docs:
        for dept in d.departments or []:
            by_department[dept] += 1
    return {
        "total": len(docs),
        "by_status": _name_values(Counter(d.status for d in docs)),
        "by_type": _name_values(Counter(d.type for d in docs)),
        "by_department": _name_values(by_department),
    }


def classify_type(doc_type: str | None) -> str | None:
    """'sops', 'formats' or None for a document type string."""
    t = (doc_type or "").strip().lower()
    if t in SOP_TYPES or "sop" in t or "instruction" in t:
        return "sops"
    if t in FORMAT_TYPES or "form" in t:
        return "formats"
    return None


def department_stats(s: "Session") -> dict[str, dict[str, int]]:
    stats: dict[str, dict[str, int]] = {}
    for d in s.scalars(select(Document).where(Document.status == STATUS_APPROVED)):
        bucket = classify_type(d.type)
        for raw in d.departments or []:
            dept = str(raw).strip()
            if not dept:
                continue
            entry = stats.setdefault(dept, {"sops": 0, "formats": 0})
            if bucket:
                entry[bucket] += 1
    return stats


def is_valid_status(status: str | None) -> bool:
    return status in DOCUMENT_STATUSES


def resolve_documents(s: "Session", ids: Any) -> list[Document]:
    """Look up documents for a related_document_ids payload field."""
    if ids is None:
        return []
    if not isinstance(ids, list):
        raise ValidationError("related_document_ids must be a list.")
    try:
        wanted = {int(i) for i in ids}
    except (TypeError, ValueError) as e:
        raise ValidationError("related_document_ids must contain integers.") from e
    docs = list(s.scalars(select(Document).where(Document.id.in_(wanted)))) if wanted else []
    missing = sorted(wanted - {d.id for d in docs})
    if missing:
        raise ValidationError(f"Unknown document id(s): {', '.join(str(m) for m in missing)}")
    return docs


def document_ref(d: Document) -> dict[str, Any]:
    return {"id": d.id, "title": d.title, "document_number": d.document_number, "status": d.status}
