# catalog_access/models/device_session.py
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class DeviceSession(SQLModel, table=True):
    """
    Binding that lets a (fingerprint, IP) pair silently resume as a user.

    Logout only flips is_active off; the row survives so the same device can
    later "log back in as <name>" without the original link.
    """

    __tablename__ = "device_sessions"

    id: int | None = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", index=True)
    token_id: int | None = Field(default=None, foreign_key="access_tokens.id", index=True)

    ip_address: str = Field(max_length=64)
    device_fingerprint: str = Field(index=True, max_length=64)
    user_agent: str | None = Field(default=None, max_length=255)

    is_active: bool = Field(default=True)

    last_access_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
