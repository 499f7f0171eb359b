from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.ims.audit import record_event
from app.ims.errors import NotFoundError, raise_if_errors
from app.ims.modules.documents.service import document_ref, resolve_documents
from app.ims.modules.objectives.models import (
    FREQUENCIES,
    OBJECTIVE_STATUSES,
    OBJECTIVE_TYPES,
    Objective,
    ObjectiveMeasurement,
)
from app.ims.utils import (
    as_float,
    clean_str,
    iso,
    next_sequence_number,
    parse_bool,
    parse_date,
    parse_decimal,
    text_value,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

OBJECTIVE_NUMBER_PREFIX = "OBJ-"


def measurement_to_dict(m: ObjectiveMeasurement) -> dict[str, Any]:
    return {
        "id": m.id,
        "objective_id": m.objective_id,
        "actual_value": as_float(m.actual_value),
        "measurement_date": iso(m.measurement_date),
        "remarks": m.remarks,
        "recorded_by_id": m.recorded_by_id,
        "recorded_by": m.recorded_by.full_name if m.recorded_by else None,
        "created_at": iso(m.created_at),
    }


def objective_to_dict(o: Objective, *, include_measurements: bool = False) -> dict[str, Any]:
    out = {
        "id": o.id,
        "objective_number": o.objective_number,
        "name": o.name,
        "description": o.description,
        "type": o.type,
        "department": o.department,
        "status": o.status,
        "uom": o.uom,
        "frequency": o.frequency,
        "target": as_float(o.target),
        "higher_is_better": o.higher_is_better,
        "owner_id": o.owner_id,
        "owner": o.owner.full_name if o.owner else None,
        "related_documents": [document_ref(d) for d in o.related_documents],
        "created_at": iso(o.created_at),
        "updated_at": iso(o.updated_at),
    }
    if include_measurements:
        out["measurements"] = [measurement_to_dict(m) for m in o.measurements]
    return out


def calculate_progress(value: float, target: float, higher_is_better: bool) -> tuple[float, str]:
    """
    Percent of target reached, clamped to 0..100, and its band.

    The band is taken from the unclamped figure: achieved >= 100, on_track >= 80,
    at_risk >= 50, otherwise behind.
    """
    if higher_is_better:
        progress = (value / target) * 100 if target > 0 else 0.0
    else:
        if value <= target:
            progress = 100.0
        else:
            progress = (target / value) * 100 if target > 0 else 0.0
    if progress >= 100:
        band = "achieved"
    elif progress >= 80:
        band = "on_track"
    elif progress >= 50:
        band = "at_risk"
    else:
        band = "behind"
    return min(max(progress, 0.0), 100.0), band


def latest_measurement(o: Objective) -> ObjectiveMeasurement | None:
    if not o.measurements:
        return None
    return max(o.measurements, key=lambda m: (m.measurement_date, m.created_at, m.id))


def _validate(payload: dict, *, partial: bool) -> list[str]:
    errors = []
    if not partial or "name" in payload:
        if not text_value(payload.get("name")):
            errors.append("Name is required.")
    if not partial or "type" in payload:
        if (payload.get("type") or "") not in OBJECTIVE_TYPES:
            errors.append(f"type must be one of: {', '.join(OBJECTIVE_TYPES)}")
    if "status" in payload and payload.get("status") not in OBJECTIVE_STATUSES:
        errors.append(f"status must be one of: {', '.join(OBJECTIVE_STATUSES)}")
    if payload.get("frequency") not in (None, "") and payload.get("frequency") not in FREQUENCIES:
        errors.append(f"frequency must be one of: {', '.join(FREQUENCIES)}")
    if not partial or "target" in payload:
        try:
            if parse_decimal(payload.get("target")) is None:
                errors.append("target is required.")
        except ValueError:
            errors.append("target must be a number.")
    return errors


def get_objective(s: "Session", objective_id: int) -> Objective:
    o = s.get(Objective, objective_id)
    if not o:
        raise NotFoundError(f"Objective with ID {objective_id} not found")
    return o


def list_objectives(s: "Session", filters: dict[str, str | None]) -> list[Objective]:
    q = select(Objective).order_by(Objective.created_at.desc(), Objective.id.desc())
    for key, col in (("type", Objective.type), ("status", Objective.status), ("department", Objective.department)):
        value = filters.get(key)
        if value and value != "all":
            q = q.where(col == value)
    search = filters.get("search")
    if search:
        like = f"%{search}%"
        q = q.where(or_(Objective.name.ilike(like), Objective.description.ilike(like), Objective.objective_number.ilike(like)))
    return list(s.scalars(q))


def _log(s: "Session", user: "User", verb: str, o: Objective, details: str, **metadata: Any) -> None:
    record_event(
        s,
        actor=user,
        action=f"objective.{verb}",
        entity_type="Objective",
        entity_id=o.id,
        details=details,
        metadata={"objective_number": o.objective_number, **metadata},
    )


def create_objective(s: "Session", payload: dict, user: "User") -> Objective:
    raise_if_errors(_validate(payload, partial=False))
    existing = list(s.scalars(select(Objective.objective_number)))
    o = Objective(
        objective_number=next_sequence_number(existing, OBJECTIVE_NUMBER_PREFIX),
        name=text_value(payload["name"]),
        description=clean_str(payload.get("description")),
        type=payload["type"],
        department=clean_str(payload.get("department")),
        status="active",
        uom=clean_str(payload.get("uom")) or "Number",
        frequency=clean_str(payload.get("frequency")) or "monthly",
        target=parse_decimal(payload.get("target")),
        higher_is_better=parse_bool(payload.get("higher_is_better"), default=True),
        owner_id=user.id,
    )
    o.related_documents = resolve_documents(s, payload.get("related_document_ids"))
    s.add(o)
    s.flush()
    _log(s, user, "create", o, f'Objective "{o.name}" created')
    return o


def update_objective(s: "Session", o: Objective, payload: dict, user: "User") -> Objective:
    raise_if_errors(_validate(payload, partial=True))
    if "name" in payload:
        o.name = text_value(payload["name"])
    for field in ("description", "department"):
        if field in payload:
            setattr(o, field, clean_str(payload.get(field)))
    for field in ("type", "status"):
        if field in payload:
            setattr(o, field, payload[field])
    if "frequency" in payload:
        o.frequency = clean_str(payload.get("frequency")) or o.frequency
    if "uom" in payload:
        o.uom = clean_str(payload.get("uom")) or "Number"
    if "target" in payload:
        o.target = parse_decimal(payload.get("target"))
    if "higher_is_better" in payload:
        o.higher_is_better = parse_bool(payload.get("higher_is_better"), default=True)
    if "related_document_ids" in payload:
        o.related_documents = resolve_documents(s, payload.get("related_document_ids"))
    o.updated_at = utcnow()
    _log(s, user, "update", o, f'Objective "{o.name}" updated')
    return o


def delete_objective(s: "Session", o: Objective, user: "User") -> None:
    _log(s, user, "delete", o, f'Objective "{o.name}" deleted')
    s.delete(o)


def add_measurement(s: "Session", o: Objective, payload: dict, user: "User") -> ObjectiveMeasurement:
    errors = []
    try:
        value = parse_decimal(payload.get("actual_value"))
        if value is None:
            errors.append("actual_value is required.")
    except ValueError:
        value = None
        errors.append("actual_value must be a number.")
    try:
        when = parse_date(payload.get("measurement_date"))
        if when is None:
            errors.append("measurement_date is required.")
    except ValueError:
        when = None
        errors.append("measurement_date must be a YYYY-MM-DD date.")
    raise_if_errors(errors)

    m = ObjectiveMeasurement(
        objective_id=o.id,
        actual_value=value,
        measurement_date=when,
        remarks=clean_str(payload.get("remarks")),
        recorded_by_id=user.id,
    )
    s.add(m)
    o.measurements.append(m)
    s.flush()
    _log(
        s,
        user,
        "measurement_add",
        o,
        f'Measurement {value} recorded for "{o.name}" on {when.isoformat()}',
        measurement_id=m.id,
    )
    return m


def list_measurements(s: "Session", o: Objective) -> list[ObjectiveMeasurement]:
    q = (
        select(ObjectiveMeasurement)
        .where(ObjectiveMeasurement.objective_id == o.id)
        .order_by(ObjectiveMeasurement.measurement_date.desc(), ObjectiveMeasurement.id.desc())
    )
    return list(s.scalars(q))


def delete_measurement(s: "Session", measurement_id: int, user: "User") -> None:
    m = s.get(ObjectiveMeasurement, measurement_id)
    if not m:
        raise NotFoundError("Measurement not found")
    o = m.objective
    _log(
        s,
        user,
        "measurement_delete",
        o,
        f'Measurement of {m.actual_value} ({m.measurement_date.isoformat()}) removed from "{o.name}"',
        measurement_id=m.id,
    )
    o.measurements.remove(m)
    s.delete(m)


def dashboard(s: "Session", filters: dict[str, str | None]) -> dict[str, Any]:
    objectives = list_objectives(s, filters)
    rows = []
    for o in objectives:
        row = objective_to_dict(o)
        latest = latest_measurement(o)
        if latest is None:
            row.update({"latest_value": None, "progress": 0, "progress_status": "behind"})
        else:
            value = float(latest.actual_value)
            progress, band = calculate_progress(value, float(o.target), o.higher_is_better)
            row.update({"latest_value": value, "progress": progress, "progress_status": band})
        rows.append(row)

    return {
        "summary": {
            "total": len(objectives),
            "active": sum(1 for o in objectives if o.status == "active"),
            "completed": sum(1 for o in objectives if o.status == "completed"),
            "on_track": sum(1 for r in rows if r["progress_status"] in ("on_track", "achieved")),
            "at_risk": sum(1 for r in rows if r["progress_status"] == "at_risk"),
            "behind": sum(1 for r in rows if r["progress_status"] == "behind"),
        },
        "by_type": {t: sum(1 for o in objectives if o.type == t) for t in OBJECTIVE_TYPES},
        "objectives": rows,
    }
