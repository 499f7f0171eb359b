from __future__ import annotations

import uuid
from io import BytesIO
from zipfile import BadZipFile
from typing import TYPE_CHECKING, Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select

from app.ims.audit import record_event
from app.ims.errors import NotFoundError, ValidationError
from app.ims.modules.org_chart.models import OrgNode
from app.ims.utils import clean_str, iso, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

_TEXT_FIELDS = ("name", "designation", "department", "photo_url")

# Spreadsheet header aliases -> node field
_IMPORT_COLUMNS = {
    "id": "id",
    "employee_id": "id",
    "name": "name",
    "parent_id": "parent_id",
    "parentid": "parent_id",
    "manager_id": "parent_id",
    "managerid": "parent_id",
    "designation": "designation",
    "department": "department",
    "photo_url": "photo_url",
    "photourl": "photo_url",
}


def node_to_dict(n: OrgNode) -> dict[str, Any]:
    return {
        "id": n.id,
        "parent_id": n.parent_id,
        "name": n.name,
        "designation": n.designation,
        "department": n.department,
        "photo_url": n.photo_url,
        "job_role_id": n.job_role_id,
        "job_role": n.job_role.title if n.job_role else None,
        "created_at": iso(n.created_at),
        "updated_at": iso(n.updated_at),
    }


def _log(s: "Session", user: "User", entity_id: str, details: str, **metadata: Any) -> None:
    record_event(
        s,
        actor=user,
        action="org_chart.update",
        entity_type="OrgNode",
        entity_id=entity_id,
        details=details,
        metadata=metadata or None,
    )


def list_nodes(s: "Session") -> list[OrgNode]:
    return list(s.scalars(select(OrgNode).order_by(OrgNode.name, OrgNode.id)))


def get_node(s: "Session", node_id: str) -> OrgNode:
    n = s.get(OrgNode, node_id)
    if not n:
        raise NotFoundError(f"Node with ID {node_id} not found")
    return n


def build_tree(nodes: list[OrgNode]) -> list[dict[str, Any]]:
    """Nest nodes under their parents. Nodes whose parent is unknown become roots."""
    items = {n.id: {**node_to_dict(n), "children": []} for n in nodes}
    roots = []
    for n in nodes:
        item = items[n.id]
        parent = items.get(n.parent_id) if n.parent_id else None
        if parent is None or n.parent_id == n.id:
            roots.append(item)
        else:
            parent["children"].append(item)
    return roots


def find_cycle(parents: dict[str, str | None]) -> str | None:
    """Return the id of a node that is its own ancestor, or None when the graph is a forest."""
    done: set[str] = set()
    for start in parents:
        seen: set[str] = set()
        cur: str | None = start
        while cur is not None and cur in parents and cur not in done:
            if cur in seen:
                return cur
            seen.add(cur)
            cur = parents[cur]
        done |= seen
    return None


def _assert_acyclic(s: "Session", pending: dict[str, str | None]) -> None:
    parents = {nid: pid for nid, pid in s.execute(select(OrgNode.id, OrgNode.parent_id)).all()}
    parents.update(pending)
    bad = find_cycle(parents)
    if bad is not None:
        raise ValidationError(f"Invalid hierarchy: node {bad} would be its own manager.")


def _node_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _job_role(s: "Session", job_role_id: Any):
    from app.ims.modules.competency.models import JobRole

    if job_role_id in (None, ""):
        return None
    try:
        rid = int(job_role_id)
    except (TypeError, ValueError) as e:
        raise ValidationError("job_role_id must be an integer.") from e
    role = s.get(JobRole, rid)
    if role is None:
        raise ValidationError(f"Job role {rid} does not exist.")
    return role


def _apply(s: "Session", n: OrgNode, payload: dict) -> None:
    for field in _TEXT_FIELDS:
        if field in payload:
            setattr(n, field, clean_str(payload.get(field)))
    if "parent_id" in payload:
        n.parent_id = _node_id(payload.get("parent_id"))
    if "job_role_id" in payload:
        n.job_role = _job_role(s, payload.get("job_role_id"))
    if not n.name:
        raise ValidationError("name is required.")


def create_node(s: "Session", payload: dict, user: "User") -> OrgNode:
    node_id = _node_id(payload.get("id")) or uuid.uuid4().hex
    if s.get(OrgNode, node_id) is not None:
        raise ValidationError(f"Node with ID {node_id} already exists.")
    n = OrgNode(id=node_id)
    _apply(s, n, payload)
    _assert_acyclic(s, {n.id: n.parent_id})
    s.add(n)
    s.flush()
    _log(s, user, n.id, f"Added employee: {n.name}")
    return n


def update_node(s: "Session", n: OrgNode, payload: dict, user: "User") -> OrgNode:
    _apply(s, n, {k: v for k, v in payload.items() if k != "id"})
    _assert_acyclic(s, {n.id: n.parent_id})
    n.updated_at = utcnow()
    _log(s, user, n.id, f"Updated employee: {n.name}")
    return n


def delete_node(s: "Session", n: OrgNode, user: "User") -> None:
    children = list(s.scalars(select(OrgNode).where(OrgNode.parent_id == n.id)))
    for child in children:
        child.parent_id = n.parent_id
    _log(s, user, n.id, f"Removed employee: {n.name}", reparented=len(children))
    s.delete(n)


def bulk_upsert(s: "Session", rows: list[dict], user: "User") -> dict[str, int]:
    if not isinstance(rows, list):
        raise ValidationError("Expected a list of nodes.")
    created = updated = 0
    pending: dict[str, str | None] = {}
    staged: dict[str, tuple[OrgNode, bool]] = {}
    for idx, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ValidationError(f"Row {idx}: expected an object.")
        node_id = _node_id(row.get("id")) or uuid.uuid4().hex
        if node_id in staged:
            n, is_new = staged[node_id]
        else:
            n = s.get(OrgNode, node_id)
            is_new = n is None
            if is_new:
                n = OrgNode(id=node_id)
        try:
            _apply(s, n, row)
        except ValidationError as e:
            raise ValidationError(f"Row {idx}: {e.message}") from e
        pending[n.id] = n.parent_id
        staged[n.id] = (n, is_new)

    _assert_acyclic(s, pending)
    for n, is_new in staged.values():
        if is_new:
            s.add(n)
            created += 1
        else:
            n.updated_at = utcnow()
            updated += 1
    s.flush()
    _log(s, user, "bulk", f"Bulk upload of {len(staged)} employees", created=created, updated=updated)
    return {"created": created, "updated": updated}


def _header_key(value: Any) -> str:
    return str(value or "").strip().lower().replace(" ", "_").replace("-", "_")


def parse_import_workbook(data: bytes) -> tuple[list[dict], list[str]]:
    """Read the first sheet of an org chart spreadsheet into node dicts plus row errors."""
    try:
        wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        raise ValidationError("File is not a readable .xlsx workbook.") from e
    try:
        ws = wb.worksheets[0]
        row_iter = ws.iter_rows(values_only=True)
        header = next(row_iter, None)
        if not header:
            raise ValidationError("Workbook is empty.")
        columns = [_IMPORT_COLUMNS.get(_header_key(h)) for h in header]
        if "id" not in columns or "name" not in columns:
            raise ValidationError("Workbook must have 'id' and 'name' columns.")

        rows: list[dict] = []
        errors: list[str] = []
        for line, values in enumerate(row_iter, start=2):
            if values is None or all(v in (None, "") for v in values):
                continue
            row: dict[str, Any] = {}
            for field, value in zip(columns, values):
                if field and field not in row:
                    row[field] = _node_id(value) if field in ("id", "parent_id") else clean_str(value)
            if not row.get("id"):
                errors.append(f"Row {line}: id is required.")
                continue
            if not row.get("name"):
                errors.append(f"Row {line}: name is required.")
                continue
            rows.append(row)
        return rows, errors
    finally:
        wb.close()


def import_workbook(s: "Session", data: bytes, user: "User") -> dict[str, Any]:
    rows, errors = parse_import_workbook(data)
    result: dict[str, Any] = {"created": 0, "updated": 0}
    if rows:
        result = bulk_upsert(s, rows, user)
    result["errors"] = errors
    return result
