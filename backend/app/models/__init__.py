"""SQLAlchemy ORM models.

Importing this module registers all tables on Base.metadata.
"""

from __future__ import annotations

from app.models.user import User

__all__ = ["User"]
