# catalog_access/repositories/token_repo.py
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import delete, update
from sqlmodel import Session, select

from catalog_access.core.clock import utcnow
from catalog_access.core.security import generate_access_token
from catalog_access.models.access_token import AccessToken
from catalog_access.models.otp import OTPVerification
from catalog_access.models.user import User


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: int


class AccessTokenRepository(ABC):
    """
    Data access layer for access tokens.

    create() never reuses a token: every call mints a new random string.
    mark_used() is the only way a token becomes bound, and it only succeeds
    while the token is still unbound.
    """

    @abstractmethod
    def create(self, email: str, user_id: int | None = None) -> IssuedToken: ...

    @abstractmethod
    def get_by_token(self, token: str) -> AccessToken | None: ...

    @abstractmethod
    def get_by_id(self, token_id: int) -> AccessToken | None: ...

    @abstractmethod
    def list_all(self) -> list[tuple[AccessToken, User | None]]:
        """Every token, newest first, left-joined with its linked user."""

    @abstractmethod
    def link_to_user(self, token_id: int, user_id: int) -> bool: ...

    @abstractmethod
    def mark_used(self, token_id: int, ip_address: str, fingerprint: str) -> bool:
        """Bind the token to ip/fingerprint; False if missing or already bound."""

    @abstractmethod
    def cleanup_expired(self) -> int: ...

    @abstractmethod
    def delete_for_user(self, user_id: int) -> int: ...


class SqlAccessTokenRepository(AccessTokenRepository):
    def __init__(self, session: Session):
        self.session = session

    def create(self, email: str, user_id: int | None = None) -> IssuedToken:
        record = AccessToken(
            token=generate_access_token(),
            email=email,
            user_id=user_id,
        )
        self.session.add(record)
        self.session.flush()  # Assign PK
        return IssuedToken(token=record.token, token_id=record.id)

    def get_by_token(self, token: str) -> AccessToken | None:
        stmt = select(AccessToken).where(AccessToken.token == token)
        return self.session.exec(stmt).first()

    def get_by_id(self, token_id: int) -> AccessToken | None:
        return self.session.get(AccessToken, token_id)

    def list_all(self) -> list[tuple[AccessToken, User | None]]:
        stmt = (
            select(AccessToken, User)
            .join(User, AccessToken.user_id == User.id, isouter=True)
            .order_by(AccessToken.created_at.desc(), AccessToken.id.desc())
        )
        return [(token, user) for token, user in self.session.exec(stmt).all()]

    def link_to_user(self, token_id: int, user_id: int) -> bool:
        stmt = (
            update(AccessToken)
            .where(AccessToken.id == token_id)
            .values(user_id=user_id)
        )
        result = self.session.exec(stmt)
        return result.rowcount > 0

    def mark_used(self, token_id: int, ip_address: str, fingerprint: str) -> bool:
        # Single conditional UPDATE: two concurrent first redemptions cannot
        # both bind the token.
        stmt = (
            update(AccessToken)
            .where(AccessToken.id == token_id, AccessToken.ip_address.is_(None))
            .values(
                is_used=True,
                used_at=utcnow(),
                ip_address=ip_address,
                device_fingerprint=fingerprint,
            )
        )
        result = self.session.exec(stmt)
        return result.rowcount == 1

    def cleanup_expired(self) -> int:
        # Tokens never expire; expires_at is never populated.
        return 0

    def delete_for_user(self, user_id: int) -> int:
        owned = select(AccessToken.id).where(AccessToken.user_id == user_id)
        self.session.exec(delete(OTPVerification).where(OTPVerification.token_id.in_(owned)))
        stmt = delete(AccessToken).where(AccessToken.user_id == user_id)
        return self.session.exec(stmt).rowcount
