from __future__ import annotations

import uuid

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorKind
from app.db.errors import classify_db_error
from app.models.user import User


# Driver errors surface either wrapped by SQLAlchemy or as raw socket errors.
_DB_ERRORS = (SQLAlchemyError, OSError)


class UserStore:
    """Queries over the users table.

    Every failure leaves as a CustomError classified here; failed writes
    roll the session back first.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_users(self) -> list[User]:
        try:
            rows = await self._session.execute(select(User).order_by(User.id))
        except _DB_ERRORS as exc:
            raise classify_db_error(exc, "failed to list users") from exc
        return list(rows.scalars().all())

    async def get_user(self, user_id: uuid.UUID) -> User:
        try:
            rows = await self._session.execute(select(User).where(User.id == user_id))
            return rows.scalar_one()
        except _DB_ERRORS as exc:
            raise classify_db_error(exc, "failed to get user %s" % user_id) from exc

    async def create_user(self, user_id: uuid.UUID, name: str, email: str) -> User:
        user = User(id=user_id, name=name, email=email)
        self._session.add(user)
        try:
            await self._session.commit()
        except _DB_ERRORS as exc:
            await self._session.rollback()
            raise classify_db_error(exc, "failed to create user") from exc
        return user

    async def update_user(self, user_id: uuid.UUID, name: str, email: str) -> User:
        user = await self.get_user(user_id)
        user.name = name
        user.email = email
        try:
            await self._session.commit()
        except _DB_ERRORS as exc:
            await self._session.rollback()
            raise classify_db_error(exc, "failed to update user %s" % user_id) from exc
        return user

    async def delete_user(self, user_id: uuid.UUID) -> None:
        try:
            result = await self._session.execute(delete(User).where(User.id == user_id))
            affected = result.rowcount
            if affected == 1:
                await self._session.commit()
                return
            await self._session.rollback()
        except _DB_ERRORS as exc:
            await self._session.rollback()
            raise classify_db_error(exc, "failed to delete user %s" % user_id) from exc
        raise ErrorKind.DB_NOT_FOUND.new(
            "delete of user %s affected %d rows", user_id, affected
        )
