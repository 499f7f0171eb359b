from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.ims.audit import record_event
from app.ims.errors import NotFoundError, ValidationError, raise_if_errors
from app.ims.modules.flowcharts.models import DEFAULT_NAME, Flowchart
from app.ims.utils import clean_str, iso, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User


def flowchart_to_dict(f: Flowchart) -> dict[str, Any]:
    return {
        "id": f.id,
        "name": f.name,
        "nodes": f.nodes or [],
        "edges": f.edges or [],
        "department_flows": f.department_flows or {},
        "created_at": iso(f.created_at),
        "updated_at": iso(f.updated_at),
    }


def list_flowcharts(s: "Session") -> list[Flowchart]:
    return list(s.scalars(select(Flowchart).order_by(Flowchart.updated_at.desc())))


def get_flowchart(s: "Session", flowchart_id: str) -> Flowchart:
    f = s.get(Flowchart, flowchart_id)
    if not f:
        raise NotFoundError("Flowchart not found")
    return f


def latest_flowchart(s: "Session") -> Flowchart | None:
    return s.scalars(select(Flowchart).order_by(Flowchart.updated_at.desc()).limit(1)).first()


def _validate(payload: dict) -> None:
    errors = []
    for field in ("nodes", "edges"):
        if field in payload and not isinstance(payload[field], list):
            errors.append(f"{field} must be a list.")
    flows = payload.get("department_flows")
    if "department_flows" in payload:
        if not isinstance(flows, dict):
            errors.append("department_flows must be an object.")
        else:
            for dept, flow in flows.items():
                if not isinstance(flow, dict):
                    errors.append(f"department_flows[{dept}] must be an object with nodes and edges.")
    raise_if_errors(errors)


def save_flowchart(s: "Session", payload: dict, user: "User") -> Flowchart:
    """Create a flowchart, or update the one named by ``payload['id']``."""
    _validate(payload)
    flowchart_id = clean_str(payload.get("id"))
    if flowchart_id:
        f = get_flowchart(s, flowchart_id)
        verb = "update"
    else:
        f = Flowchart(id=str(uuid.uuid4()), name=DEFAULT_NAME, nodes=[], edges=[], department_flows={})
        s.add(f)
        verb = "create"

    if "name" in payload:
        name = clean_str(payload.get("name"))
        if name is None:
            raise ValidationError("name must not be empty.")
        f.name = name
    for field in ("nodes", "edges", "department_flows"):
        if field in payload:
            setattr(f, field, payload[field])
    f.updated_at = utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"flowchart.{verb}",
        entity_type="Flowchart",
        entity_id=f.id,
        details=f"Flowchart '{f.name}' saved",
    )
    return f
