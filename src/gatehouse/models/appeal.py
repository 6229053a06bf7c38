# src/gatehouse/models/appeal.py
"""Unban requests filed by blocked clients."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.db.session import Base

APPEAL_STATUS_PENDING = "pending"
APPEAL_STATUS_RESOLVED = "resolved"


class Appeal(Base):
    """An appeal is created once and resolved at most once by an operator."""

    __tablename__ = "appeals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    blocked_until: Mapped[float | None] = mapped_column(Float, nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    contact: Mapped[str | None] = mapped_column(String(120), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    geo: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=APPEAL_STATUS_PENDING
    )
    decision: Mapped[str | None] = mapped_column(String(16), nullable=True)
    admin_note: Mapped[str | None] = mapped_column(String(220), nullable=True)
    notification_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    resolved_at: Mapped[float | None] = mapped_column(Float, nullable=True)
