from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ims.models import Base, User
from app.ims.modules.documents.models import Document
from app.ims.utils import utcnow

RISK_TYPES = ("qra", "hira", "eaa")

STATUS_DRAFT = "draft"
STATUS_PENDING_REVIEW = "pending_review"
STATUS_APPROVED = "approved"
STATUS_OPEN = "open"
STATUS_UNDER_REVIEW = "under_review"
STATUS_CLOSED = "closed"
RISK_STATUSES = (STATUS_DRAFT, STATUS_PENDING_REVIEW, STATUS_APPROVED, STATUS_OPEN, STATUS_UNDER_REVIEW, STATUS_CLOSED)

RISK_LEVELS = ("low", "medium", "high", "critical")


class RiskDocument(Base):
    __tablename__ = "risk_documents"
    risk_id: Mapped[int] = mapped_column(ForeignKey("risks.id", ondelete="CASCADE"), primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True)


class Risk(Base):
    __tablename__ = "risks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    risk_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    interested_parties: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Type-specific descriptors (HIRA: area/hazard/risk, EAA: aspect/impact, QRA: failure_mode/potential_impact)
    area: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hazard: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk: Mapped[str | None] = mapped_column(Text, nullable=True)
    aspect: Mapped[str | None] = mapped_column(Text, nullable=True)
    impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_mode: Mapped[str | None] = mapped_column(Text, nullable=True)
    potential_impact: Mapped[str | None] = mapped_column(Text, nullable=True)

    likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    current_controls: Mapped[str | None] = mapped_column(Text, nullable=True)
    proposed_actions: Mapped[str | None] = mapped_column(Text, nullable=True)

    residual_likelihood: Mapped[int | None] = mapped_column(Integer, nullable=True)
    residual_severity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    residual_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    residual_level: Mapped[str | None] = mapped_column(String(16), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_DRAFT, index=True)

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    reviewer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    review_comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    owner: Mapped[User] = relationship("User", foreign_keys=[owner_id], lazy="selectin")
    reviewer: Mapped[User | None] = relationship("User", foreign_keys=[reviewer_id], lazy="selectin")
    related_documents: Mapped[list[Document]] = relationship(secondary="risk_documents", lazy="selectin")
