"""
Central constants: role keys, the permission catalogue, and the default
role -> permission matrix seeded by scripts/init_db.py.
"""
from __future__ import annotations

ROLE_ADMIN = "admin"
ROLE_COMPLIANCE_MANAGER = "compliance_manager"
ROLE_DEPT_HEAD = "dept_head"
ROLE_CREATOR = "creator"
ROLE_REVIEWER = "reviewer"
ROLE_VIEWER = "viewer"
ROLE_AUDITOR = "auditor"

ROLES: dict[str, str] = {
    ROLE_ADMIN: "Administrator",
    ROLE_COMPLIANCE_MANAGER: "Compliance Manager",
    ROLE_DEPT_HEAD: "Department Head",
    ROLE_CREATOR: "Document Creator",
    ROLE_REVIEWER: "Reviewer",
    ROLE_VIEWER: "Viewer",
    ROLE_AUDITOR: "Internal Auditor",
}

PERMISSIONS: dict[str, str] = {
    # Documents
    "docs.view": "Docs: view",
    "docs.download": "Docs: download/preview files",
    "docs.create": "Docs: create",
    "docs.edit": "Docs: edit drafts and upload versions",
    "docs.submit": "Docs: submit for review",
    "docs.review": "Docs: approve/reject",
    "docs.archive": "Docs: archive",
    "docs.delete": "Docs: delete",
    "docs.reports": "Docs: report statistics",
    "docs.manage": "Docs: manage any document (admin override)",
    # Risks
    "risks.view": "Risks: view",
    "risks.edit": "Risks: create/edit/submit",
    "risks.review": "Risks: approve/reject/close",
    # Objectives
    "objectives.view": "Objectives: view",
    "objectives.edit": "Objectives: create/edit/measure",
    # Internal audit
    "audits.view": "Internal audit: view",
    "audits.edit": "Internal audit: plan/schedule/execute",
    # Audit trail
    "audit_log.view": "Audit trail: view/export",
    # Competency & training
    "competency.view": "Competency: view",
    "competency.manage": "Competency: manage",
    # Org chart
    "org_chart.view": "Org chart: view",
    "org_chart.edit": "Org chart: edit",
    # Flowcharts
    "flowcharts.view": "Flowcharts: view",
    "flowcharts.edit": "Flowcharts: edit",
    # Platform
    "settings.manage": "Settings: manage master data",
    "users.view": "Users: view",
    "users.manage": "Users: manage",
}

_READ_ALL = (
    "docs.view",
    "docs.download",
    "risks.view",
    "objectives.view",
    "audits.view",
    "competency.view",
    "org_chart.view",
    "flowcharts.view",
)

_DOC_AUTHOR = ("docs.create", "docs.edit", "docs.submit")

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    ROLE_ADMIN: tuple(PERMISSIONS),
    ROLE_COMPLIANCE_MANAGER: _READ_ALL
    + (
        "docs.review",
        "docs.archive",
        "docs.reports",
        "risks.edit",
        "risks.review",
        "objectives.edit",
        "audits.edit",
        "audit_log.view",
        "flowcharts.edit",
        "users.view",
    ),
    ROLE_DEPT_HEAD: _READ_ALL + _DOC_AUTHOR + ("risks.edit", "risks.review", "objectives.edit", "users.view"),
    ROLE_CREATOR: _READ_ALL + _DOC_AUTHOR + ("risks.edit", "objectives.edit", "flowcharts.edit"),
    ROLE_REVIEWER: _READ_ALL + _DOC_AUTHOR + ("docs.review", "risks.edit", "competency.manage"),
    ROLE_VIEWER: _READ_ALL,
    ROLE_AUDITOR: _READ_ALL + ("audits.edit",),
}

# Master-data keys stored in system_settings.
SETTING_DEPARTMENTS = "departments"
SETTING_DOCUMENT_TYPES = "document_types"
SETTING_UOM = "uom"
SETTING_AUDIT_REPORT_HEADER = "audit_report_header"
