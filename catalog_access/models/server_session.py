# catalog_access/models/server_session.py
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class ServerSession(SQLModel, table=True):
    """
    Server-side session referenced by the signed session cookie.

    token_id is NULL for admins (they are never device bound).
    """

    __tablename__ = "server_sessions"

    id: str = Field(primary_key=True, max_length=128)

    user_id: int = Field(foreign_key="users.id", index=True)
    token_id: int | None = Field(default=None)

    expires_at: datetime
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
