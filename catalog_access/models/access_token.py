# catalog_access/models/access_token.py
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class AccessToken(SQLModel, table=True):
    """
    One-time access link credential.

    Lifecycle:
      - created unbound (ip_address is NULL)
      - bound exactly once on first redemption (ip_address, device_fingerprint,
        is_used, used_at are set together)
      - bound tokens stay redeemable forever, but only from the bound IP

    expires_at exists for schema compatibility and is never set: binding,
    not time, is the security boundary.
    """

    __tablename__ = "access_tokens"

    id: int | None = Field(default=None, primary_key=True)

    token: str = Field(unique=True, index=True, max_length=128)

    user_id: int | None = Field(
        default=None,
        foreign_key="users.id",
        index=True,
        description="Linked user; NULL until a user is matched or created",
    )

    email: str = Field(index=True, max_length=254)

    is_used: bool = Field(default=False)
    ip_address: str | None = Field(default=None, max_length=64)
    device_fingerprint: str | None = Field(default=None, max_length=64)

    expires_at: datetime | None = Field(default=None)
    used_at: datetime | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_bound(self) -> bool:
        return self.ip_address is not None
