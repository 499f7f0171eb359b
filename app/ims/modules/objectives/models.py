from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ims.models import Base, User
from app.ims.modules.documents.models import Document
from app.ims.utils import utcnow

OBJECTIVE_TYPES = ("quality", "environmental", "safety")
OBJECTIVE_STATUSES = ("active", "completed", "cancelled", "on_hold")
FREQUENCIES = ("weekly", "monthly", "quarterly", "yearly")


class ObjectiveDocument(Base):
    __tablename__ = "objective_documents"
    objective_id: Mapped[int] = mapped_column(ForeignKey("objectives.id", ondelete="CASCADE"), primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True)


class Objective(Base):
    __tablename__ = "objectives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    objective_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    uom: Mapped[str] = mapped_column(String(64), nullable=False, default="Number")
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")
    target: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    higher_is_better: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    owner: Mapped[User] = relationship("User", lazy="selectin")
    related_documents: Mapped[list[Document]] = relationship(secondary="objective_documents", lazy="selectin")
    measurements: Mapped[list["ObjectiveMeasurement"]] = relationship(
        "ObjectiveMeasurement",
        back_populates="objective",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ObjectiveMeasurement.measurement_date.desc()",
    )


class ObjectiveMeasurement(Base):
    __tablename__ = "objective_measurements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    objective_id: Mapped[int] = mapped_column(ForeignKey("objectives.id", ondelete="CASCADE"), nullable=False, index=True)
    actual_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    measurement_date: Mapped[date] = mapped_column(Date, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    objective: Mapped[Objective] = relationship("Objective", back_populates="measurements", lazy="selectin")
    recorded_by: Mapped[User | None] = relationship("User", lazy="selectin")
