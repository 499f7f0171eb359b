from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.ims.models import Base, JSONType
from app.ims.utils import utcnow

DEFAULT_NAME = "New Flowchart"


class Flowchart(Base):
    __tablename__ = "flowcharts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_NAME)

    nodes: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    edges: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    department_flows: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, index=True)
