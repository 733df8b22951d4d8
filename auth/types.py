"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from auth.passwords import MAX_PASSWORD_BYTES, password_too_long


class Role(str, Enum):
    """Platform roles, lowest privilege first."""

    VIEWER = "VIEWER"
    CONTRIBUTOR = "CONTRIBUTOR"
    EDITOR = "EDITOR"
    SUPER_ADMIN = "SUPER_ADMIN"


class User(BaseModel):
    """A registered user, including the account-security fields."""

    id: UUID
    fullname: str
    username: str
    email: EmailStr
    password_hash: str = Field(..., repr=False)
    role: Role = Role.VIEWER
    failed_attempts: int = Field(default=0, ge=0)
    last_failed_at: datetime | None = None
    locked: bool = False
    locked_until: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OtpChallenge(BaseModel):
    """A login passcode awaiting verification."""

    id: UUID
    user_id: UUID
    code: str = Field(..., repr=False)
    created_at: datetime
    expires_at: datetime
    used: bool  # Required - fail closed, no default


class TokenClaims(BaseModel):
    """Claims carried by a signed access token."""

    user_id: UUID
    email: EmailStr
    role: Role


class RegisterRequest(BaseModel):
    """Request payload for registration."""

    fullname: str = Field(..., min_length=2, max_length=100)
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def password_fits_hash(cls, value: str) -> str:
        if password_too_long(value):
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return value


class LoginRequest(BaseModel):
    """Request payload for the password step."""

    username_or_email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class VerifyOtpRequest(BaseModel):
    """Request payload for the passcode step."""

    username_or_email: str = Field(..., min_length=1)
    otp_code: str = Field(..., min_length=1, max_length=12)


class AuthResponse(BaseModel):
    """
    Outcome of register, login or verify-otp.

    After the password step token is None and mfa_required is True; the
    token is only issued once the passcode verifies.
    """

    token: str | None = None
    mfa_required: bool = False
    user_id: UUID
    username: str
    email: EmailStr
    role: Role | None = None
    message: str | None = None
