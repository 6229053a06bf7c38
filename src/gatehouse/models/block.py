# src/gatehouse/models/block.py
"""Persisted temporary bans."""

from __future__ import annotations

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.db.session import Base


class BlockedAddress(Base):
    """A client address banned until ``blocked_until`` (epoch seconds)."""

    __tablename__ = "blocked_addresses"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    blocked_until: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="auto")
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
