from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.db.users import UserStore
from app.services.users import UserOperations


async def get_user_operations(db: AsyncSession = Depends(get_db)) -> UserOperations:
    return UserOperations(UserStore(db))
