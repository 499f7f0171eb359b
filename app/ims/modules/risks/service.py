from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.ims.audit import record_event
from app.ims.constants import ROLE_DEPT_HEAD
from app.ims.errors import NotFoundError, ValidationError, WorkflowError, raise_if_errors
from app.ims.models import Role, User
from app.ims.modules.documents.service import document_ref, resolve_documents
from app.ims.modules.notifications.service import notify
from app.ims.modules.risks.models import (
    RISK_LEVELS,
    RISK_STATUSES,
    RISK_TYPES,
    STATUS_CLOSED,
    STATUS_DRAFT,
    STATUS_OPEN,
    STATUS_PENDING_REVIEW,
    Risk,
)
from app.ims.utils import clean_str, iso, next_sequence_number, parse_date, text_value, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

RISK_NUMBER_PREFIX = "R-"

_TEXT_FIELDS = (
    "description",
    "department",
    "source",
    "interested_parties",
    "area",
    "hazard",
    "risk",
    "aspect",
    "impact",
    "failure_mode",
    "potential_impact",
    "current_controls",
    "proposed_actions",
)


def calculate_risk_level(rating: int) -> str:
    if rating <= 4:
        return "low"
    if rating <= 9:
        return "medium"
    if rating <= 16:
        return "high"
    return "critical"


def rate(likelihood: int | None, severity: int | None) -> tuple[int | None, str | None]:
    """(rating, level), or (None, None) unless both inputs are present."""
    if not likelihood or not severity:
        return None, None
    rating = likelihood * severity
    return rating, calculate_risk_level(rating)


def risk_to_dict(r: Risk) -> dict[str, Any]:
    out: dict[str, Any] = {"id": r.id, "risk_number": r.risk_number, "type": r.type, "title": r.title}
    for field in _TEXT_FIELDS:
        out[field] = getattr(r, field)
    out.update(
        {
            "likelihood": r.likelihood,
            "severity": r.severity,
            "risk_rating": r.risk_rating,
            "risk_level": r.risk_level,
            "residual_likelihood": r.residual_likelihood,
            "residual_severity": r.residual_severity,
            "residual_rating": r.residual_rating,
            "residual_level": r.residual_level,
            "status": r.status,
            "owner_id": r.owner_id,
            "owner": r.owner.full_name if r.owner else None,
            "reviewer_id": r.reviewer_id,
            "reviewer": r.reviewer.full_name if r.reviewer else None,
            "review_date": iso(r.review_date),
            "review_comments": r.review_comments,
            "related_documents": [document_ref(d) for d in r.related_documents],
            "created_at": iso(r.created_at),
            "updated_at": iso(r.updated_at),
        }
    )
    return out


def _score(payload: dict, field: str, *, required: bool) -> tuple[int | None, str | None]:
    raw = payload.get(field)
    if raw in (None, ""):
        return None, (f"{field} is required." if required else None)
    if isinstance(raw, bool):
        return None, f"{field} must be an integer between 1 and 5."
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None, f"{field} must be an integer between 1 and 5."
    if not 1 <= value <= 5:
        return None, f"{field} must be an integer between 1 and 5."
    return value, None


def find_department_head(s: "Session", department: str | None) -> User | None:
    if not department:
        return None
    q = (
        select(User)
        .join(User.roles)
        .where(Role.key == ROLE_DEPT_HEAD, User.department == department, User.is_active.is_(True))
        .order_by(User.id)
        .limit(1)
    )
    return s.scalars(q).first()


def next_risk_number(s: "Session") -> str:
    return next_sequence_number(list(s.scalars(select(Risk.risk_number))), RISK_NUMBER_PREFIX)


def get_risk(s: "Session", risk_id: int) -> Risk:
    r = s.get(Risk, risk_id)
    if not r:
        raise NotFoundError(f"Risk with ID {risk_id} not found")
    return r


def list_risks(s: "Session", filters: dict[str, str | None]) -> list[Risk]:
    q = select(Risk).order_by(Risk.created_at.desc(), Risk.id.desc())
    for key, col in (("type", Risk.type), ("status", Risk.status), ("level", Risk.risk_level), ("department", Risk.department)):
        value = filters.get(key)
        if value and value != "all":
            q = q.where(col == value)
    search = filters.get("search")
    if search:
        like = f"%{search}%"
        q = q.where(or_(Risk.title.ilike(like), Risk.description.ilike(like), Risk.risk_number.ilike(like)))
    return list(s.scalars(q))


def _log(s: "Session", user: User, verb: str, r: Risk, details: str) -> None:
    record_event(
        s,
        actor=user,
        action=f"risk.{verb}",
        entity_type="Risk",
        entity_id=r.id,
        details=details,
        metadata={"risk_number": r.risk_number, "status": r.status},
    )


def create_risk(s: "Session", payload: dict, user: User) -> Risk:
    errors = []
    rtype = text_value(payload.get("type")).lower()
    if rtype not in RISK_TYPES:
        errors.append(f"type must be one of: {', '.join(RISK_TYPES)}")
    if not text_value(payload.get("title")):
        errors.append("Title is required.")
    likelihood, err = _score(payload, "likelihood", required=True)
    errors += [err] if err else []
    severity, err = _score(payload, "severity", required=True)
    errors += [err] if err else []
    res_l, err = _score(payload, "residual_likelihood", required=False)
    errors += [err] if err else []
    res_s, err = _score(payload, "residual_severity", required=False)
    errors += [err] if err else []
    raise_if_errors(errors)

    rating, level = rate(likelihood, severity)
    res_rating, res_level = rate(res_l, res_s)
    department = clean_str(payload.get("department"))
    dept_head = find_department_head(s, department)

    r = Risk(
        risk_number=next_risk_number(s),
        type=rtype,
        title=text_value(payload["title"]),
        likelihood=likelihood,
        severity=severity,
        risk_rating=rating,
        risk_level=level,
        residual_likelihood=res_l,
        residual_severity=res_s,
        residual_rating=res_rating,
        residual_level=res_level,
        status=STATUS_DRAFT,
        owner_id=user.id,
        reviewer_id=dept_head.id if dept_head else None,
        review_date=_review_date(payload),
    )
    for field in _TEXT_FIELDS:
        setattr(r, field, clean_str(payload.get(field)))
    r.related_documents = resolve_documents(s, payload.get("related_document_ids"))
    s.add(r)
    s.flush()

    _log(s, user, "create", r, f'Risk "{r.title}" created')
    return r


def _review_date(payload: dict):
    try:
        return parse_date(payload.get("review_date"))
    except ValueError as e:
        raise ValidationError("review_date must be a YYYY-MM-DD date.") from e


def update_risk(s: "Session", r: Risk, payload: dict, user: User) -> Risk:
    errors = []
    if "type" in payload:
        rtype = text_value(payload.get("type")).lower()
        if rtype not in RISK_TYPES:
            errors.append(f"type must be one of: {', '.join(RISK_TYPES)}")
        else:
            r.type = rtype
    if "title" in payload:
        if not text_value(payload.get("title")):
            errors.append("Title is required.")
        else:
            r.title = text_value(payload["title"])
    if "status" in payload and payload.get("status") not in RISK_STATUSES:
        errors.append(f"status must be one of: {', '.join(RISK_STATUSES)}")

    scores: dict[str, int | None] = {}
    for field in ("likelihood", "severity", "residual_likelihood", "residual_severity"):
        if field in payload:
            value, err = _score(payload, field, required=field in ("likelihood", "severity"))
            if err:
                errors.append(err)
            scores[field] = value
    raise_if_errors(errors)

    if "likelihood" in scores or "severity" in scores:
        r.likelihood = scores.get("likelihood", r.likelihood)
        r.severity = scores.get("severity", r.severity)
        r.risk_rating, r.risk_level = rate(r.likelihood, r.severity)
    if "residual_likelihood" in scores or "residual_severity" in scores:
        r.residual_likelihood = scores.get("residual_likelihood", r.residual_likelihood)
        r.residual_severity = scores.get("residual_severity", r.residual_severity)
        r.residual_rating, r.residual_level = rate(r.residual_likelihood, r.residual_severity)

    old_department = r.department
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(r, field, clean_str(payload.get(field)))
    if r.department and r.department != old_department:
        dept_head = find_department_head(s, r.department)
        if dept_head:
            r.reviewer_id = dept_head.id

    if "status" in payload:
        r.status = payload["status"]
    if "review_date" in payload:
        r.review_date = _review_date(payload)
    if "review_comments" in payload:
        r.review_comments = clean_str(payload.get("review_comments"))
    if "related_document_ids" in payload:
        r.related_documents = resolve_documents(s, payload.get("related_document_ids"))

    r.updated_at = utcnow()
    _log(s, user, "update", r, f'Risk "{r.title}" updated')
    return r


def delete_risk(s: "Session", r: Risk, user: User) -> None:
    if r.status != STATUS_DRAFT:
        raise WorkflowError("Only draft risks can be deleted")
    _log(s, user, "delete", r, f'Risk "{r.title}" deleted')
    s.delete(r)


def submit_risk(s: "Session", r: Risk, user: User) -> Risk:
    if r.status != STATUS_DRAFT:
        raise WorkflowError("Only draft risks can be submitted for review")
    if not r.reviewer_id:
        raise WorkflowError("No reviewer assigned. Please ensure department is set.")
    r.status = STATUS_PENDING_REVIEW
    r.updated_at = utcnow()
    _log(s, user, "submit", r, f'Risk "{r.title}" submitted for review')
    notify(s, r.reviewer_id, f'Risk {r.risk_number} "{r.title}" is awaiting your review.')
    return r


def approve_risk(s: "Session", r: Risk, user: User, comments: str | None = None) -> Risk:
    if r.status != STATUS_PENDING_REVIEW:
        raise WorkflowError("Only pending review risks can be approved")
    r.status = STATUS_OPEN
    r.review_comments = comments or ""
    r.updated_at = utcnow()
    _log(s, user, "approve", r, f'Risk "{r.title}" approved')
    notify(s, r.owner_id, f'Risk {r.risk_number} "{r.title}" has been approved.')
    return r


def reject_risk(s: "Session", r: Risk, user: User, comments: str | None = None) -> Risk:
    if r.status != STATUS_PENDING_REVIEW:
        raise WorkflowError("Only pending review risks can be rejected")
    r.status = STATUS_DRAFT
    r.review_comments = comments or ""
    r.updated_at = utcnow()
    _log(s, user, "reject", r, f'Risk "{r.title}" rejected')
    notify(s, r.owner_id, f'Risk {r.risk_number} "{r.title}" was returned to draft by the reviewer.')
    return r


def close_risk(s: "Session", r: Risk, user: User, comments: str | None = None) -> Risk:
    r.status = STATUS_CLOSED
    r.review_comments = comments or ""
    r.updated_at = utcnow()
    _log(s, user, "close", r, f'Risk "{r.title}" closed')
    return r


def dashboard(s: "Session", risk_type: str | None = None) -> dict[str, Any]:
    q = select(Risk)
    if risk_type and risk_type != "all":
        q = q.where(Risk.type == risk_type)
    risks = list(s.scalars(q))

    matrix = {f"{l}-{sv}": 0 for l in range(1, 6) for sv in range(1, 6)}
    for r in risks:
        key = f"{r.likelihood}-{r.severity}"
        if key in matrix:
            matrix[key] += 1

    return {
        "total": len(risks),
        "by_level": {lvl: sum(1 for r in risks if r.risk_level == lvl) for lvl in RISK_LEVELS},
        "by_status": {
            st: sum(1 for r in risks if r.status == st)
            for st in (STATUS_DRAFT, STATUS_PENDING_REVIEW, STATUS_OPEN, STATUS_CLOSED)
        },
        "by_type": {t: sum(1 for r in risks if r.type == t) for t in RISK_TYPES},
        "matrix": matrix,
    }
