# catalog_access/repositories/device_session_repo.py
from abc import ABC, abstractmethod

from sqlalchemy import delete, update
from sqlmodel import Session, select

from catalog_access.core.clock import utcnow
from catalog_access.models.device_session import DeviceSession


class DeviceSessionRepository(ABC):
    """
    Data access layer for device sessions.

    A session matches a device only when BOTH fingerprint and IP agree.
    get_by_fingerprint(active_only=False) deliberately finds deactivated
    sessions too: logout keeps the row so the device can resume later.
    """

    @abstractmethod
    def create(
        self,
        user_id: int,
        token_id: int | None,
        ip_address: str,
        fingerprint: str,
        user_agent: str | None = None,
    ) -> DeviceSession: ...

    @abstractmethod
    def get_by_user_and_token(
        self, user_id: int, token_id: int | None, active_only: bool = True
    ) -> DeviceSession | None: ...

    @abstractmethod
    def get_by_fingerprint(
        self, fingerprint: str, ip_address: str, active_only: bool = False
    ) -> DeviceSession | None:
        """Active sessions win over inactive ones, then most recently used."""

    @abstractmethod
    def update_last_access(self, session_id: int) -> None: ...

    @abstractmethod
    def deactivate(self, session_id: int) -> bool: ...

    @abstractmethod
    def reactivate(self, session_id: int) -> bool: ...

    @abstractmethod
    def deactivate_for_device(self, fingerprint: str, ip_address: str) -> int:
        """Deactivate every active session on this device; returns how many."""

    @abstractmethod
    def validate_access(self, user_id: int, ip_address: str, fingerprint: str) -> bool:
        """True iff an active session matches user, IP and fingerprint."""

    @abstractmethod
    def delete_for_user(self, user_id: int) -> int: ...


class SqlDeviceSessionRepository(DeviceSessionRepository):
    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: int,
        token_id: int | None,
        ip_address: str,
        fingerprint: str,
        user_agent: str | None = None,
    ) -> DeviceSession:
        record = DeviceSession(
            user_id=user_id,
            token_id=token_id,
            ip_address=ip_address,
            device_fingerprint=fingerprint,
            user_agent=user_agent,
        )
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        return record

    def get_by_user_and_token(
        self, user_id: int, token_id: int | None, active_only: bool = True
    ) -> DeviceSession | None:
        stmt = select(DeviceSession).where(
            DeviceSession.user_id == user_id,
            DeviceSession.token_id == token_id,
        )
        if active_only:
            stmt = stmt.where(DeviceSession.is_active == True)  # noqa: E712
        stmt = stmt.order_by(
            DeviceSession.is_active.desc(), DeviceSession.last_access_at.desc()
        )
        return self.session.exec(stmt).first()

    def get_by_fingerprint(
        self, fingerprint: str, ip_address: str, active_only: bool = False
    ) -> DeviceSession | None:
        stmt = select(DeviceSession).where(
            DeviceSession.device_fingerprint == fingerprint,
            DeviceSession.ip_address == ip_address,
        )
        if active_only:
            stmt = stmt.where(DeviceSession.is_active == True)  # noqa: E712
        stmt = stmt.order_by(
            DeviceSession.is_active.desc(),
            DeviceSession.last_access_at.desc(),
            DeviceSession.id.desc(),
        )
        return self.session.exec(stmt).first()

    def update_last_access(self, session_id: int) -> None:
        stmt = (
            update(DeviceSession)
            .where(DeviceSession.id == session_id)
            .values(last_access_at=utcnow())
        )
        self.session.exec(stmt)

    def _set_active(self, session_id: int, active: bool) -> bool:
        stmt = (
            update(DeviceSession)
            .where(DeviceSession.id == session_id)
            .values(is_active=active, last_access_at=utcnow())
        )
        return self.session.exec(stmt).rowcount > 0

    def deactivate(self, session_id: int) -> bool:
        return self._set_active(session_id, False)

    def reactivate(self, session_id: int) -> bool:
        return self._set_active(session_id, True)

    def deactivate_for_device(self, fingerprint: str, ip_address: str) -> int:
        stmt = (
            update(DeviceSession)
            .where(
                DeviceSession.device_fingerprint == fingerprint,
                DeviceSession.ip_address == ip_address,
                DeviceSession.is_active == True,  # noqa: E712
            )
            .values(is_active=False)
        )
        return self.session.exec(stmt).rowcount

    def validate_access(self, user_id: int, ip_address: str, fingerprint: str) -> bool:
        stmt = select(DeviceSession.id).where(
            DeviceSession.user_id == user_id,
            DeviceSession.ip_address == ip_address,
            DeviceSession.device_fingerprint == fingerprint,
            DeviceSession.is_active == True,  # noqa: E712
        )
        return self.session.exec(stmt).first() is not None

    def delete_for_user(self, user_id: int) -> int:
        stmt = delete(DeviceSession).where(DeviceSession.user_id == user_id)
        return self.session.exec(stmt).rowcount
