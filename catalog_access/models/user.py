# catalog_access/models/user.py
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Identity record for catalog visitors and admins.

    Identity:
      - id: numeric primary key
      - phone: unique phone-like handle (historically the WhatsApp number),
        stored normalized as +<country code><number>
      - email: optional; the key used to match access links to users

    Role flags:
      - is_admin: admins bypass device binding entirely
      - is_primary_admin: at most one row system-wide; cannot be deleted,
        and only the primary admin can modify it

    Flags are only changed through the dedicated repository methods.
    """

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)

    name: str = Field(max_length=100, description="Display name")

    phone: str = Field(
        unique=True,
        index=True,
        max_length=20,
        description="Normalized phone handle (+<cc><number>)",
    )

    email: str | None = Field(default=None, index=True, max_length=254)

    # pwdlib hash; only admins log in with a password
    password_hash: str | None = Field(default=None)

    city: str | None = Field(default=None, max_length=100)

    is_admin: bool = Field(default=False)
    is_primary_admin: bool = Field(default=False)
    profile_completed: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
