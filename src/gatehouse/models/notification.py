# src/gatehouse/models/notification.py
"""Append-only operator audit log."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.db.session import Base


class Notification(Base):
    """One audit entry; ``meta`` is stored in the ``metadata`` column."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    client_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
