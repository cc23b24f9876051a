# catalog_access/repositories/session_repo.py
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import delete
from sqlmodel import Session, select

from catalog_access.models.server_session import ServerSession


class ServerSessionRepository(ABC):
    """Server-side session records keyed by the id carried in the cookie."""

    @abstractmethod
    def create(
        self, sid: str, user_id: int, token_id: int | None, expires_at: datetime
    ) -> ServerSession: ...

    @abstractmethod
    def get_active(self, sid: str, now: datetime) -> ServerSession | None: ...

    @abstractmethod
    def delete(self, sid: str) -> bool: ...

    @abstractmethod
    def delete_for_user(self, user_id: int) -> int: ...

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int: ...


class SqlServerSessionRepository(ServerSessionRepository):
    def __init__(self, session: Session):
        self.session = session

    def create(
        self, sid: str, user_id: int, token_id: int | None, expires_at: datetime
    ) -> ServerSession:
        record = ServerSession(
            id=sid, user_id=user_id, token_id=token_id, expires_at=expires_at
        )
        self.session.add(record)
        self.session.flush()
        return record

    def get_active(self, sid: str, now: datetime) -> ServerSession | None:
        stmt = select(ServerSession).where(
            ServerSession.id == sid, ServerSession.expires_at > now
        )
        return self.session.exec(stmt).first()

    def delete(self, sid: str) -> bool:
        stmt = delete(ServerSession).where(ServerSession.id == sid)
        return self.session.exec(stmt).rowcount > 0

    def delete_for_user(self, user_id: int) -> int:
        stmt = delete(ServerSession).where(ServerSession.user_id == user_id)
        return self.session.exec(stmt).rowcount

    def cleanup_expired(self, now: datetime) -> int:
        stmt = delete(ServerSession).where(ServerSession.expires_at <= now)
        return self.session.exec(stmt).rowcount
