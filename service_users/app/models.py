"""
Request models for the Users Service.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class UserRole(str, Enum):
    """Roles a user may hold."""
    USER = "user"
    ADMIN = "admin"
    MANAGER = "manager"


class RegisterRequest(BaseModel):
    """Request model for registration."""
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2)
    roles: List[UserRole] = Field(default_factory=lambda: [UserRole.USER])


class LoginRequest(BaseModel):
    """Request model for login."""
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(..., min_length=1)


class UpdateProfileRequest(BaseModel):
    """Request model for profile updates; at least one field is required."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.name is None and self.email is None:
            raise ValueError("at least one of name or email is required")
        return self
