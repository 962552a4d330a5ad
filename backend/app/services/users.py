from __future__ import annotations

import dataclasses
import secrets
import time
import uuid

from app.core.errors import CustomError, append_checkpoint
from app.db.users import UserStore
from app.models.user import User


def new_user_id() -> uuid.UUID:
    """Return a UUIDv7: 48-bit unix ms timestamp, sub-ms fraction, random tail.

    Ids sort by creation time, so listing by primary key is chronological.
    """

    ns = time.time_ns()
    ms, sub_ms = divmod(ns, 1_000_000)
    # 12 bits of sub-millisecond precision in place of rand_a.
    frac = (sub_ms << 12) // 1_000_000
    tail = int.from_bytes(secrets.token_bytes(8), "big") & ((1 << 62) - 1)

    value = (ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= frac << 64
    value |= 0b10 << 62
    value |= tail
    return uuid.UUID(int=value)


@dataclasses.dataclass(frozen=True, slots=True)
class UserPrototype:
    name: str
    email: str


class UserOperations:
    """Application layer between the HTTP handlers and UserStore.

    Errors raised by the store are already classified; this layer only adds
    checkpoints to them.
    """

    def __init__(self, store: UserStore) -> None:
        self._store = store

    async def list_users(self) -> list[User]:
        try:
            return await self._store.list_users()
        except CustomError as exc:
            raise append_checkpoint(exc, "operations: list users") from exc

    async def create_user(self, prototype: UserPrototype) -> User:
        user_id = new_user_id()
        try:
            return await self._store.create_user(
                user_id, prototype.name, prototype.email.lower()
            )
        except CustomError as exc:
            raise append_checkpoint(exc, f"operations: create user {user_id}") from exc

    async def get_user(self, user_id: uuid.UUID) -> User:
        try:
            return await self._store.get_user(user_id)
        except CustomError as exc:
            raise append_checkpoint(exc, f"operations: get user {user_id}") from exc

    async def update_user(self, user_id: uuid.UUID, prototype: UserPrototype) -> User:
        try:
            return await self._store.update_user(
                user_id, prototype.name, prototype.email.lower()
            )
        except CustomError as exc:
            raise append_checkpoint(exc, f"operations: update user {user_id}") from exc

    async def delete_user(self, user_id: uuid.UUID) -> None:
        try:
            await self._store.delete_user(user_id)
        except CustomError as exc:
            raise append_checkpoint(exc, f"operations: delete user {user_id}") from exc
