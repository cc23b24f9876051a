# catalog_access/schemas/user.py
from pydantic import ConfigDict, EmailStr, Field, field_validator

from catalog_access.schemas.common import CamelModel


class UserCreate(CamelModel):
    """
    Admin payload for creating a user.

    Only the primary admin may create another admin (is_admin=True).
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=2, max_length=100)
    phone: str
    email: EmailStr | None = None
    city: str | None = Field(default=None, max_length=100)
    password: str | None = Field(default=None, min_length=6, max_length=128)
    is_admin: bool = False

    @field_validator("name", "phone")
    @classmethod
    def normalize_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v


class UserUpdate(CamelModel):
    """
    Partial admin update.

    Admin flags (is_admin / is_primary_admin) are honored only when the
    acting admin is the primary admin.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=2, max_length=100)
    phone: str | None = None
    email: EmailStr | None = None
    city: str | None = Field(default=None, max_length=100)
    password: str | None = Field(default=None, min_length=6, max_length=128)
    is_admin: bool | None = None
    is_primary_admin: bool | None = None

    @field_validator("name", "phone", "city")
    @classmethod
    def normalize_optional(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v


class DeleteResult(CamelModel):
    success: bool
