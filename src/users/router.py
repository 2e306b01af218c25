"""Users API router - Employee and staff directory.

Users are the subjects of KPI scores and the recipients of training,
audits, notifications and email.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.db.models import User, UserRole
from src.dependencies import DbSession

router = APIRouter(prefix="/users", tags=["users"])


class UserCreateRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    role: UserRole = UserRole.EMPLOYEE
    employee_id: str | None = Field(default=None, max_length=50)
    department: str | None = Field(default=None, max_length=100)


class UserResponse(BaseModel):
    """Public user information.

    Attributes:
        id: User UUID.
        name: Display name.
        email: Email address.
        role: Role used for recipient resolution.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    employee_id: str | None = None
    department: str | None = None
    is_active: bool


@router.get("", response_model=list[UserResponse])
async def list_users(
    session: DbSession,
    role: UserRole | None = None,
    active_only: Annotated[bool, Query(description="Hide inactive users")] = True,
) -> list[UserResponse]:
    """List users, optionally filtered by role.

    Example:
        >>> GET /api/users?role=manager
        >>> [{"id": "...", "name": "Priya Nair", "role": "manager", ...}]
    """
    query = select(User).order_by(User.name)
    if role is not None:
        query = query.where(User.role == role)
    if active_only:
        query = query.where(User.is_active.is_(True))
    result = await session.execute(query)
    return [UserResponse.model_validate(user) for user in result.scalars().all()]


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(request: UserCreateRequest, session: DbSession) -> UserResponse:
    """Create a user.

    Raises:
        HTTPException: 409 if the email is already registered.
    """
    user = User(**request.model_dump())
    session.add(user)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise HTTPException(status_code=409, detail=f"User with email {request.email} already exists") from e
    await session.refresh(user)
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: UUID, session: DbSession) -> UserResponse:
    user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return UserResponse.model_validate(user)
