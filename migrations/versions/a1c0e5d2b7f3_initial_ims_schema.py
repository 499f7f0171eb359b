"""initial IMS schema

Revision ID: a1c0e5d2b7f3
Revises:
Create Date: 2026-10-19

Creates every table for users/RBAC, audit trail, notifications, settings,
documents, risks, objectives, internal audit, org chart, flowcharts and competency.
Tables that already exist are skipped so the revision can be stamped onto a
database bootstrapped with metadata.create_all().
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "a1c0e5d2b7f3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return cols


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing = set(insp.get_table_names())

    def create(name: str, *cols, indexes: tuple[tuple[str, list[str], bool], ...] = ()) -> None:
        if name in existing:
            return
        op.create_table(name, *cols)
        for ix_name, ix_cols, unique in indexes:
            op.create_index(ix_name, name, ix_cols, unique=unique)

    # Competency job roles come first: users and org nodes reference them.
    create(
        "job_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )

    # Users / RBAC
    create(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("job_role_id", sa.Integer(), sa.ForeignKey("job_roles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    create(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        *_timestamps(updated=False),
    )
    create(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        *_timestamps(updated=False),
    )
    create(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    create(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    create(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        indexes=(("ix_audit_events_created_at", ["created_at"], False),),
    )
    create(
        "system_settings",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value", JSON, nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    # Documents
    create(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("document_number", sa.String(64), nullable=True, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(64), nullable=False, server_default="other"),
        sa.Column("departments", JSON, nullable=False),
        sa.Column("tags", JSON, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("review_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("current_version_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        indexes=(("ix_documents_status", ["status"], False),),
    )
    create(
        "document_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("change_notes", sa.Text(), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("document_id", "version_number", name="uq_document_version_number"),
    )
    if "documents" not in existing and bind.dialect.name != "sqlite":
        # Circular reference: added once both tables exist.
        op.create_foreign_key(
            "fk_documents_current_version",
            "documents",
            "document_versions",
            ["current_version_id"],
            ["id"],
            ondelete="SET NULL",
        )
    create(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        indexes=(("ix_notifications_user_id", ["user_id"], False),),
    )

    # Risks
    create(
        "risks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("risk_number", sa.String(32), nullable=False, unique=True),
        sa.Column("type", sa.String(8), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("source", sa.String(255), nullable=True),
        sa.Column("interested_parties", sa.Text(), nullable=True),
        sa.Column("area", sa.String(255), nullable=True),
        sa.Column("hazard", sa.Text(), nullable=True),
        sa.Column("risk", sa.Text(), nullable=True),
        sa.Column("aspect", sa.Text(), nullable=True),
        sa.Column("impact", sa.Text(), nullable=True),
        sa.Column("failure_mode", sa.Text(), nullable=True),
        sa.Column("potential_impact", sa.Text(), nullable=True),
        sa.Column("likelihood", sa.Integer(), nullable=False),
        sa.Column("severity", sa.Integer(), nullable=False),
        sa.Column("risk_rating", sa.Integer(), nullable=False),
        sa.Column("risk_level", sa.String(16), nullable=False),
        sa.Column("current_controls", sa.Text(), nullable=True),
        sa.Column("proposed_actions", sa.Text(), nullable=True),
        sa.Column("residual_likelihood", sa.Integer(), nullable=True),
        sa.Column("residual_severity", sa.Integer(), nullable=True),
        sa.Column("residual_rating", sa.Integer(), nullable=True),
        sa.Column("residual_level", sa.String(16), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("reviewer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("review_date", sa.Date(), nullable=True),
        sa.Column("review_comments", sa.Text(), nullable=True),
        *_timestamps(),
        indexes=(
            ("ix_risks_type", ["type"], False),
            ("ix_risks_department", ["department"], False),
            ("ix_risks_risk_level", ["risk_level"], False),
            ("ix_risks_status", ["status"], False),
        ),
    )
    create(
        "risk_documents",
        sa.Column("risk_id", sa.Integer(), sa.ForeignKey("risks.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    )

    # Objectives
    create(
        "objectives",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("objective_number", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("uom", sa.String(64), nullable=False, server_default="Number"),
        sa.Column("frequency", sa.String(16), nullable=False, server_default="monthly"),
        sa.Column("target", sa.Numeric(10, 2), nullable=False),
        sa.Column("higher_is_better", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
        indexes=(("ix_objectives_type", ["type"], False),),
    )
    create(
        "objective_documents",
        sa.Column("objective_id", sa.Integer(), sa.ForeignKey("objectives.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    )
    create(
        "objective_measurements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("objective_id", sa.Integer(), sa.ForeignKey("objectives.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actual_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("measurement_date", sa.Date(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("recorded_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        indexes=(("ix_objective_measurements_objective_id", ["objective_id"], False),),
    )

    # Internal audit
    create(
        "audit_participants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("certificate_name", sa.String(255), nullable=True),
        sa.Column("certificate_storage_key", sa.String(512), nullable=True),
        sa.Column("certificate_content_type", sa.String(128), nullable=True),
        *_timestamps(),
        indexes=(
            ("ix_audit_participants_type", ["type"], False),
            ("ix_audit_participants_department", ["department"], False),
        ),
    )
    create(
        "audit_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("department", sa.String(128), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("is_planned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("outcome", sa.String(16), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("department", "month", name="uq_audit_plan_department_month"),
    )
    create(
        "audit_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("department", sa.String(128), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="Pending"),
        *_timestamps(),
        indexes=(("ix_audit_schedules_date", ["date"], False),),
    )
    create(
        "audit_schedule_auditors",
        sa.Column("schedule_id", sa.Integer(), sa.ForeignKey("audit_schedules.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("participant_id", sa.Integer(), sa.ForeignKey("audit_participants.id", ondelete="CASCADE"), primary_key=True),
    )
    create(
        "audit_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("schedule_id", sa.Integer(), sa.ForeignKey("audit_schedules.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Draft"),
        sa.Column("entries", JSON, nullable=False),
        *_timestamps(),
        indexes=(("ix_audit_executions_date", ["date"], False),),
    )

    # Org chart and flowcharts
    create(
        "org_nodes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("parent_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("designation", sa.String(255), nullable=True),
        sa.Column("department", sa.String(128), nullable=True),
        sa.Column("photo_url", sa.String(1024), nullable=True),
        sa.Column("job_role_id", sa.Integer(), sa.ForeignKey("job_roles.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        indexes=(
            ("ix_org_nodes_parent_id", ["parent_id"], False),
            ("ix_org_nodes_department", ["department"], False),
        ),
    )
    create(
        "flowcharts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, server_default="New Flowchart"),
        sa.Column("nodes", JSON, nullable=False),
        sa.Column("edges", JSON, nullable=False),
        sa.Column("department_flows", JSON, nullable=False),
        *_timestamps(),
        indexes=(("ix_flowcharts_updated_at", ["updated_at"], False),),
    )

    # Competency
    create(
        "competencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(32), nullable=False, server_default="Technical"),
        sa.Column("max_level", sa.Integer(), nullable=False, server_default="5"),
        *_timestamps(),
        sa.CheckConstraint("max_level >= 1 AND max_level <= 10", name="ck_competencies_max_level"),
    )
    create(
        "competency_requirements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_role_id", sa.Integer(), sa.ForeignKey("job_roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competency_id", sa.Integer(), sa.ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("required_level", sa.Integer(), nullable=False),
        sa.UniqueConstraint("job_role_id", "competency_id", name="uq_competency_requirements_role_competency"),
        sa.CheckConstraint("required_level >= 1", name="ck_competency_requirements_level"),
        indexes=(
            ("ix_competency_requirements_job_role_id", ["job_role_id"], False),
            ("ix_competency_requirements_competency_id", ["competency_id"], False),
        ),
    )
    create(
        "employee_skills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.String(64), sa.ForeignKey("org_nodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competency_id", sa.Integer(), sa.ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_level", sa.Integer(), nullable=False),
        sa.Column("last_assessed_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("employee_id", "competency_id", name="uq_employee_skills_employee_competency"),
        sa.CheckConstraint("current_level >= 1", name="ck_employee_skills_level"),
        indexes=(
            ("ix_employee_skills_employee_id", ["employee_id"], False),
            ("ix_employee_skills_competency_id", ["competency_id"], False),
        ),
    )
    create(
        "training_programs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_competency_id", sa.Integer(), sa.ForeignKey("competencies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("duration", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    create(
        "training_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_id", sa.String(64), sa.ForeignKey("org_nodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("training_program_id", sa.Integer(), sa.ForeignKey("training_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="Assigned"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completion_date", sa.Date(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        indexes=(
            ("ix_training_plans_employee_id", ["employee_id"], False),
            ("ix_training_plans_training_program_id", ["training_program_id"], False),
        ),
    )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "sqlite":
        op.drop_constraint("fk_documents_current_version", "documents", type_="foreignkey")
    for name in (
        "training_plans",
        "training_programs",
        "employee_skills",
        "competency_requirements",
        "competencies",
        "flowcharts",
        "org_nodes",
        "audit_executions",
        "audit_schedule_auditors",
        "audit_schedules",
        "audit_plans",
        "audit_participants",
        "objective_measurements",
        "objective_documents",
        "objectives",
        "risk_documents",
        "risks",
        "notifications",
        "document_versions",
        "documents",
        "system_settings",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
        "job_roles",
    ):
        op.drop_table(name)
