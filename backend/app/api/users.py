from __future__ import annotations

import re
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic_core import PydanticCustomError

from app.api.deps import get_user_operations
from app.api.validation_verbs import EMAIL_RULE
from app.services.users import UserOperations, UserPrototype


router = APIRouter(prefix="/users", tags=["users"])

# Deliberately loose: one "@", no spaces, a dot in the domain.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise PydanticCustomError(EMAIL_RULE, "value is not a valid email address")
    return value


Email = Annotated[str, AfterValidator(_check_email)]


class UserIn(BaseModel):
    name: str = Field(min_length=1)
    email: Email


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str


class UserResponse(BaseModel):
    user: UserOut


class UsersResponse(BaseModel):
    users: list[UserOut]


@router.get("", response_model=UsersResponse)
async def list_users(ops: UserOperations = Depends(get_user_operations)) -> UsersResponse:
    users = await ops.list_users()
    return UsersResponse(users=[UserOut.model_validate(u) for u in users])


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    payload: UserIn,
    ops: UserOperations = Depends(get_user_operations),
) -> UserResponse:
    user = await ops.create_user(UserPrototype(name=payload.name, email=payload.email))
    return UserResponse(user=UserOut.model_validate(user))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    ops: UserOperations = Depends(get_user_operations),
) -> UserResponse:
    user = await ops.get_user(user_id)
    return UserResponse(user=UserOut.model_validate(user))


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    payload: UserIn,
    ops: UserOperations = Depends(get_user_operations),
) -> UserResponse:
    user = await ops.update_user(
        user_id, UserPrototype(name=payload.name, email=payload.email)
    )
    return UserResponse(user=UserOut.model_validate(user))


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    ops: UserOperations = Depends(get_user_operations),
) -> Response:
    await ops.delete_user(user_id)
    return Response(status_code=204)
