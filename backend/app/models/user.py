from __future__ import annotations

import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin


class User(TimestampMixin, Base):
    __tablename__ = "users"

    # Ids are UUIDv7, generated by the caller (see app.services.users).
    # sa.Uuid maps to a native UUID on PostgreSQL and CHAR(32) elsewhere.
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid(), primary_key=True)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    # Stored lowercased.
    email: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
