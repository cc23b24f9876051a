# catalog_access/repositories/otp_repo.py
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import delete, update
from sqlmodel import Session, select

from catalog_access.core.clock import utcnow
from catalog_access.models.otp import OTPVerification


class OTPRepository(ABC):
    @abstractmethod
    def create(
        self, email: str, token_id: int | None, code_hash: str, expires_at: datetime
    ) -> OTPVerification: ...

    @abstractmethod
    def get_pending(self, email: str, token_id: int | None) -> OTPVerification | None:
        """Latest unverified challenge for (email, token)."""

    @abstractmethod
    def increment_attempts(self, otp_id: int) -> int: ...

    @abstractmethod
    def mark_verified(self, otp_id: int) -> bool: ...

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int: ...


class SqlOTPRepository(OTPRepository):
    def __init__(self, session: Session):
        self.session = session

    def create(
        self, email: str, token_id: int | None, code_hash: str, expires_at: datetime
    ) -> OTPVerification:
        record = OTPVerification(
            email=email,
            token_id=token_id,
            code_hash=code_hash,
            expires_at=expires_at,
        )
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        return record

    def get_pending(self, email: str, token_id: int | None) -> OTPVerification | None:
        stmt = (
            select(OTPVerification)
            .where(
                OTPVerification.email == email,
                OTPVerification.token_id == token_id,
                OTPVerification.is_verified == False,  # noqa: E712
            )
            .order_by(OTPVerification.created_at.desc(), OTPVerification.id.desc())
        )
        return self.session.exec(stmt).first()

    def increment_attempts(self, otp_id: int) -> int:
        stmt = (
            update(OTPVerification)
            .where(OTPVerification.id == otp_id)
            .values(attempts=OTPVerification.attempts + 1)
        )
        self.session.exec(stmt)
        attempts = self.session.exec(
            select(OTPVerification.attempts).where(OTPVerification.id == otp_id)
        ).first()
        return int(attempts or 0)

    def mark_verified(self, otp_id: int) -> bool:
        stmt = (
            update(OTPVerification)
            .where(OTPVerification.id == otp_id)
            .values(is_verified=True, verified_at=utcnow())
        )
        return self.session.exec(stmt).rowcount > 0

    def cleanup_expired(self, now: datetime) -> int:
        stmt = delete(OTPVerification).where(OTPVerification.expires_at < now)
        return self.session.exec(stmt).rowcount
