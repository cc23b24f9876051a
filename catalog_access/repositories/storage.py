# catalog_access/repositories/storage.py
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator

from sqlmodel import Session

from catalog_access.repositories.device_session_repo import (
    DeviceSessionRepository,
    SqlDeviceSessionRepository,
)
from catalog_access.repositories.otp_repo import OTPRepository, SqlOTPRepository
from catalog_access.repositories.session_repo import (
    ServerSessionRepository,
    SqlServerSessionRepository,
)
from catalog_access.repositories.token_repo import (
    AccessTokenRepository,
    SqlAccessTokenRepository,
)
from catalog_access.repositories.user_repo import SqlUserRepository, UserRepository


class Storage(ABC):
    """
    Facade over every repository the access-control services need.

    Services receive a Storage instead of a raw DB session so the same code
    runs against Postgres/SQLite (SqlStorage) or process memory
    (MemoryStorage). Every mutation must happen inside ``transaction()``:
    multi-step changes (bind token + create device session) either land
    together or not at all.
    """

    users: UserRepository
    tokens: AccessTokenRepository
    devices: DeviceSessionRepository
    otps: OTPRepository
    sessions: ServerSessionRepository

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]: ...


class SqlStorage(Storage):
    """Storage bound to one SQLModel Session (one per request)."""

    def __init__(self, session: Session):
        self.session = session
        self.users = SqlUserRepository(session)
        self.tokens = SqlAccessTokenRepository(session)
        self.devices = SqlDeviceSessionRepository(session)
        self.otps = SqlOTPRepository(session)
        self.sessions = SqlServerSessionRepository(session)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
