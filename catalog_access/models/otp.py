# catalog_access/models/otp.py
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class OTPVerification(SQLModel, table=True):
    """
    Email one-time-passcode challenge tied to an access token.

    Only the SHA-256 hash of the code is stored.
    """

    __tablename__ = "otp_verifications"

    id: int | None = Field(default=None, primary_key=True)

    email: str = Field(index=True, max_length=254)
    token_id: int | None = Field(default=None, foreign_key="access_tokens.id", index=True)

    code_hash: str = Field(max_length=64)
    attempts: int = Field(default=0)
    is_verified: bool = Field(default=False)

    expires_at: datetime
    verified_at: datetime | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
