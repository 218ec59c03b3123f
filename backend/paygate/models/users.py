"""
Pydantic User Models

Dashboard accounts. Sessions are carried by stateless JWTs, not stored.
"""
import re
from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator

from .transactions import EMAIL_PATTERN

UserRole = Literal["USER", "MERCHANT", "ADMIN"]
UserStatus = Literal["active", "inactive", "suspended"]

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")


class User(BaseModel):
    id: str
    email: str
    password_hash: str
    role: UserRole = "MERCHANT"
    business_name: str = ""
    email_verified: bool = False
    email_verification_token: Optional[str] = None
    email_verification_expires: Optional[datetime] = None
    status: UserStatus = "active"
    created_at: datetime
    updated_at: datetime

    def public_view(self) -> "UserPublic":
        return UserPublic(**self.model_dump(include=set(UserPublic.model_fields)))


class UserPublic(BaseModel):
    id: str
    email: str
    role: UserRole
    business_name: str = ""
    email_verified: bool
    status: UserStatus
    created_at: datetime


class RegisterRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    business_name: Optional[str] = Field(default=None, min_length=3)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError("Password must contain uppercase, lowercase, number, and special character")
        return v


class LoginRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1)


class TokenPayload(BaseModel):
    """Claims carried by both access and refresh tokens."""
    user_id: str
    role: str
