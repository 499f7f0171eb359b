from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ims.models import Base, JSONType
from app.ims.utils import utcnow

PARTICIPANT_TYPES = ("auditor", "auditee")
PLAN_OUTCOMES = ("actual", "cancelled")

SCHEDULE_PENDING = "Pending"
SCHEDULE_IN_PROGRESS = "In Progress"
SCHEDULE_COMPLETED = "Completed"
SCHEDULE_STATUSES = (SCHEDULE_PENDING, SCHEDULE_IN_PROGRESS, SCHEDULE_COMPLETED)

EXECUTION_DRAFT = "Draft"
EXECUTION_SUBMITTED = "Submitted"
EXECUTION_STATUSES = (EXECUTION_DRAFT, EXECUTION_SUBMITTED)

FINDING_STATUSES = ("OK", "AFI", "NC", "")


class AuditParticipant(Base):
    __tablename__ = "audit_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    certificate_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    certificate_storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    certificate_content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class AuditPlan(Base):
    __tablename__ = "audit_plans"
    __table_args__ = (UniqueConstraint("department", "month", name="uq_audit_plan_department_month"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    department: Mapped[str] = mapped_column(String(128), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    is_planned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class AuditScheduleAuditor(Base):
    __tablename__ = "audit_schedule_auditors"
    schedule_id: Mapped[int] = mapped_column(ForeignKey("audit_schedules.id", ondelete="CASCADE"), primary_key=True)
    participant_id: Mapped[int] = mapped_column(ForeignKey("audit_participants.id", ondelete="CASCADE"), primary_key=True)


class AuditSchedule(Base):
    __tablename__ = "audit_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    department: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SCHEDULE_PENDING)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    auditors: Mapped[list[AuditParticipant]] = relationship(
        secondary="audit_schedule_auditors",
        lazy="selectin",
        order_by="AuditParticipant.name",
    )
    execution: Mapped["AuditExecution | None"] = relationship(
        "AuditExecution",
        back_populates="schedule",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class AuditExecution(Base):
    __tablename__ = "audit_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("audit_schedules.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EXECUTION_DRAFT)
    # List of finding dicts; see service.normalize_entries for the shape.
    entries: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    schedule: Mapped[AuditSchedule] = relationship("AuditSchedule", back_populates="execution", lazy="selectin")
