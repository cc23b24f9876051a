# catalog_access/schemas/auth.py
from datetime import datetime

from pydantic import ConfigDict, EmailStr, Field, field_validator

from catalog_access.schemas.common import CamelModel


def _strip_required(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("field cannot be empty")
    return v


def _normalize_email(v: str) -> str:
    return v.strip().lower() if isinstance(v, str) else v


# -------- Users as seen by the auth endpoints --------


class UserSummary(CamelModel):
    """
    Minimal identity shown on logout / bound-device prompts.

    ``email`` falls back to the phone handle for legacy users without one.
    """

    id: int
    name: str
    email: str
    is_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "UserSummary":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email or user.phone,
            is_admin=user.is_admin,
        )


class UserRead(CamelModel):
    """Full user record returned to clients (never includes the password)."""

    id: int
    name: str
    phone: str
    email: str | None = None
    city: str | None = None
    is_admin: bool
    is_primary_admin: bool
    profile_completed: bool
    created_at: datetime


# -------- Request access --------


class RequestAccessIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class RequestAccessOut(CamelModel):
    success: bool
    message: str


# -------- Token redemption --------


class TokenValidationResult(CamelModel):
    """
    Result of redeeming an access link.

    ``authenticated`` is True when a server session was established by this
    call (returning visitor with a completed profile).
    """

    success: bool
    requires_profile_completion: bool
    email: str
    token_id: int
    user: UserSummary | None = None
    authenticated: bool = False
    message: str


# -------- Profile completion --------


class CompleteProfileIn(CamelModel):
    """
    Payload for promoting a token-bound visitor into a user.

    All fields are required and must be non-empty after trimming.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(max_length=100)
    phone: str = Field(max_length=32)
    city: str = Field(max_length=100)
    email: EmailStr
    token_id: int

    @field_validator("name", "phone", "city")
    @classmethod
    def not_empty(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class ProfileResult(CamelModel):
    success: bool
    user: UserRead
    message: str


# -------- Session endpoints --------


class MeOut(CamelModel):
    user: UserRead
    source: str


class AccessCheckOut(CamelModel):
    success: bool
    user: UserSummary
    source: str


class LogoutResult(CamelModel):
    success: bool
    bound_user: UserSummary | None = None


class BoundLoginResult(CamelModel):
    success: bool
    user: UserSummary


class AdminLoginIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    phone: str
    password: str = Field(min_length=6, max_length=128)

    @field_validator("phone")
    @classmethod
    def not_empty(cls, v: str) -> str:
        return _strip_required(v)


class AdminLoginOut(CamelModel):
    success: bool
    user: UserRead


# -------- Admin token views --------


class AccessTokenRead(CamelModel):
    """
    Admin view of an access token, joined with its linked user.

    The raw token string is never listed; admins resend links instead.
    """

    id: int
    email: str
    user_id: int | None = None
    is_used: bool
    ip_address: str | None = None
    device_fingerprint: str | None = None
    created_at: datetime
    used_at: datetime | None = None
    user_name: str | None = None
    user_phone: str | None = None
    user_email: str | None = None


class TokenListOut(CamelModel):
    tokens: list[AccessTokenRead]


class ResendTokenOut(CamelModel):
    success: bool
    message: str
    token_url: str
