"""Pydantic schemas for the caller identity."""

from pydantic import BaseModel, Field

from src.auth.permissions import UserRole


class Identity(BaseModel):
    """Who is calling, as asserted by the upstream gateway."""

    user_id: str = Field(..., min_length=1)
    role: UserRole = UserRole.USER
    display_name: str | None = Field(None, max_length=100)

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN
