from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ims.models import Base
from app.ims.utils import utcnow

CATEGORIES = ("Technical", "Behavioral", "Leadership", "Domain")
DEFAULT_MAX_LEVEL = 5
MAX_LEVEL_LIMIT = 10

TRAINING_ASSIGNED = "Assigned"
TRAINING_IN_PROGRESS = "In Progress"
TRAINING_COMPLETED = "Completed"
TRAINING_OVERDUE = "Overdue"
TRAINING_STATUSES = (TRAINING_ASSIGNED, TRAINING_IN_PROGRESS, TRAINING_COMPLETED, TRAINING_OVERDUE)


class Competency(Base):
    __tablename__ = "competencies"
    __table_args__ = (CheckConstraint("max_level >= 1 AND max_level <= 10", name="ck_competencies_max_level"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="Technical")
    max_level: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_LEVEL)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class JobRole(Base):
    __tablename__ = "job_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    requirements: Mapped[list["CompetencyRequirement"]] = relationship(
        back_populates="job_role", cascade="all, delete-orphan", passive_deletes=True
    )


class CompetencyRequirement(Base):
    __tablename__ = "competency_requirements"
    __table_args__ = (
        UniqueConstraint("job_role_id", "competency_id", name="uq_competency_requirements_role_competency"),
        CheckConstraint("required_level >= 1", name="ck_competency_requirements_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_role_id: Mapped[int] = mapped_column(ForeignKey("job_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    competency_id: Mapped[int] = mapped_column(ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False, index=True)
    required_level: Mapped[int] = mapped_column(Integer, nullable=False)

    job_role: Mapped[JobRole] = relationship(back_populates="requirements")
    competency: Mapped[Competency] = relationship(lazy="selectin")


class EmployeeSkill(Base):
    __tablename__ = "employee_skills"
    __table_args__ = (
        UniqueConstraint("employee_id", "competency_id", name="uq_employee_skills_employee_competency"),
        CheckConstraint("current_level >= 1", name="ck_employee_skills_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("org_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    competency_id: Mapped[int] = mapped_column(ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False, index=True)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    last_assessed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    competency: Mapped[Competency] = relationship(lazy="selectin")


class TrainingProgram(Base):
    __tablename__ = "training_programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_competency_id: Mapped[int | None] = mapped_column(
        ForeignKey("competencies.id", ondelete="SET NULL"), nullable=True
    )
    duration: Mapped[str | None] = mapped_column(String(64), nullable=True)  # free text, e.g. "2 days"

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    target_competency: Mapped[Competency | None] = relationship(lazy="selectin")


class TrainingPlan(Base):
    __tablename__ = "training_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("org_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    training_program_id: Mapped[int] = mapped_column(
        ForeignKey("training_programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TRAINING_ASSIGNED)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    training_program: Mapped[TrainingProgram] = relationship(lazy="selectin")
