# src/gatehouse/models/admin.py
"""Operator credentials."""

from __future__ import annotations

from sqlalchemy import Float, String
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.db.session import Base


class AdminAccount(Base):
    """The operator allowed to review appeals and manage bans."""

    __tablename__ = "admin_accounts"

    username: Mapped[str] = mapped_column(String(50), primary_key=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
