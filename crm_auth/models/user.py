# crm_auth/models/user.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from crm_auth.db.base_class import Base


class User(Base):
    """The principal. Rows are soft-deleted via ``is_deleted``, never removed."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(160), nullable=False, unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    # normalised Role name: REP / MANAGER / ADMIN
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="REP")
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="UNASSIGNED", index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="SELF_REGISTRATION")
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
