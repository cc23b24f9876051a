# catalog_access/repositories/memory.py
"""
In-memory storage for tests and small single-process deployments.

All repositories share one re-entrant lock. ``transaction()`` holds that
lock for the whole block, so multi-step mutations are serialized against
every other request. There is no rollback: a failure half-way through a
block leaves earlier steps applied.

Records are copied on the way in and out, so callers can never mutate
stored state without going through a repository method.
"""
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, TypeVar

from sqlmodel import SQLModel

from catalog_access.core.clock import as_utc, utcnow
from catalog_access.core.security import generate_access_token
from catalog_access.models.access_token import AccessToken
from catalog_access.models.device_session import DeviceSession
from catalog_access.models.otp import OTPVerification
from catalog_access.models.server_session import ServerSession
from catalog_access.models.user import User
from catalog_access.repositories.device_session_repo import DeviceSessionRepository
from catalog_access.repositories.otp_repo import OTPRepository
from catalog_access.repositories.session_repo import ServerSessionRepository
from catalog_access.repositories.storage import Storage
from catalog_access.repositories.token_repo import AccessTokenRepository, IssuedToken
from catalog_access.repositories.user_repo import UserRepository

M = TypeVar("M", bound=SQLModel)


def _copy(record: M) -> M:
    return type(record)(**record.model_dump())


def _copy_or_none(record: M | None) -> M | None:
    return _copy(record) if record is not None else None


class _State:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users: dict[int, User] = {}
        self.tokens: dict[int, AccessToken] = {}
        self.devices: dict[int, DeviceSession] = {}
        self.otps: dict[int, OTPVerification] = {}
        self.sessions: dict[str, ServerSession] = {}
        self.user_ids = itertools.count(1)
        self.token_ids = itertools.count(1)
        self.device_ids = itertools.count(1)
        self.otp_ids = itertools.count(1)


class MemoryUserRepository(UserRepository):
    def __init__(self, state: _State):
        self.state = state

    def get_by_id(self, user_id: int) -> User | None:
        with self.state.lock:
            return _copy_or_none(self.state.users.get(user_id))

    def get_by_email(self, email: str) -> User | None:
        with self.state.lock:
            for user in sorted(self.state.users.values(), key=lambda u: u.id):
                if user.email == email:
                    return _copy(user)
        return None

    def get_by_phone(self, phone: str) -> User | None:
        with self.state.lock:
            for user in self.state.users.values():
                if user.phone == phone:
                    return _copy(user)
        return None

    def get_primary_admin(self) -> User | None:
        with self.state.lock:
            for user in self.state.users.values():
                if user.is_primary_admin:
                    return _copy(user)
        return None

    def list(self, skip: int = 0, limit: int = 50) -> list[User]:
        with self.state.lock:
            users = sorted(self.state.users.values(), key=lambda u: u.id)
            return [_copy(u) for u in users[skip : skip + limit]]

    def create(self, user: User) -> User:
        with self.state.lock:
            if self.get_by_phone(user.phone) is not None:
                raise ValueError(f"phone {user.phone} already registered")
            record = _copy(user)
            record.id = next(self.state.user_ids)
            self.state.users[record.id] = record
            return _copy(record)

    def _require(self, user_id: int) -> User:
        user = self.state.users.get(user_id)
        if user is None:
            raise LookupError(f"user {user_id} does not exist")
        return user

    def complete_profile(
        self, user_id: int, *, name: str, phone: str, city: str, email: str
    ) -> User:
        with self.state.lock:
            user = self._require(user_id)
            user.name = name
            user.phone = phone
            user.city = city
            user.email = email
            user.profile_completed = True
            return _copy(user)

    def update_details(
        self,
        user_id: int,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        city: str | None = None,
    ) -> User:
        with self.state.lock:
            user = self._require(user_id)
            if name is not None:
                user.name = name
            if phone is not None:
                user.phone = phone
            if email is not None:
                user.email = email
            if city is not None:
                user.city = city
            return _copy(user)

    def set_password(self, user_id: int, password_hash: str) -> None:
        with self.state.lock:
            self._require(user_id).password_hash = password_hash

    def set_admin(self, user_id: int, is_admin: bool) -> User:
        with self.state.lock:
            user = self._require(user_id)
            user.is_admin = is_admin
            return _copy(user)

    def transfer_primary_admin(self, from_user_id: int, to_user_id: int) -> None:
        with self.state.lock:
            source = self._require(from_user_id)
            target = self._require(to_user_id)
            source.is_primary_admin = False
            target.is_primary_admin = True
            target.is_admin = True

    def delete(self, user_id: int) -> bool:
        with self.state.lock:
            return self.state.users.pop(user_id, None) is not None


class MemoryAccessTokenRepository(AccessTokenRepository):
    def __init__(self, state: _State):
        self.state = state

    def create(self, email: str, user_id: int | None = None) -> IssuedToken:
        with self.state.lock:
            record = AccessToken(
                id=next(self.state.token_ids),
                token=generate_access_token(),
                email=email,
                user_id=user_id,
            )
            self.state.tokens[record.id] = record
            return IssuedToken(token=record.token, token_id=record.id)

    def get_by_token(self, token: str) -> AccessToken | None:
        with self.state.lock:
            for record in self.state.tokens.values():
                if record.token == token:
                    return _copy(record)
        return None

    def get_by_id(self, token_id: int) -> AccessToken | None:
        with self.state.lock:
            return _copy_or_none(self.state.tokens.get(token_id))

    def list_all(self) -> list[tuple[AccessToken, User | None]]:
        with self.state.lock:
            tokens = sorted(
                self.state.tokens.values(),
                key=lambda t: (t.created_at, t.id),
                reverse=True,
            )
            return [
                (
                    _copy(t),
                    _copy_or_none(self.state.users.get(t.user_id))
                    if t.user_id is not None
                    else None,
                )
                for t in tokens
            ]

    def link_to_user(self, token_id: int, user_id: int) -> bool:
        with self.state.lock:
            record = self.state.tokens.get(token_id)
            if record is None:
                return False
            record.user_id = user_id
            return True

    def mark_used(self, token_id: int, ip_address: str, fingerprint: str) -> bool:
        with self.state.lock:
            record = self.state.tokens.get(token_id)
            if record is None or record.ip_address is not None:
                return False
            record.is_used = True
            record.used_at = utcnow()
            record.ip_address = ip_address
            record.device_fingerprint = fingerprint
            return True

    def cleanup_expired(self) -> int:
        # Tokens never expire; expires_at is never populated.
        return 0

    def delete_for_user(self, user_id: int) -> int:
        with self.state.lock:
            doomed = [tid for tid, t in self.state.tokens.items() if t.user_id == user_id]
            for tid in doomed:
                del self.state.tokens[tid]
            for oid in [o.id for o in self.state.otps.values() if o.token_id in doomed]:
                del self.state.otps[oid]
            return len(doomed)


class MemoryDeviceSessionRepository(DeviceSessionRepository):
    def __init__(self, state: _State):
        self.state = state

    def create(
        self,
        user_id: int,
        token_id: int | None,
        ip_address: str,
        fingerprint: str,
        user_agent: str | None = None,
    ) -> DeviceSession:
        with self.state.lock:
            record = DeviceSession(
                id=next(self.state.device_ids),
                user_id=user_id,
                token_id=token_id,
                ip_address=ip_address,
                device_fingerprint=fingerprint,
                user_agent=user_agent,
            )
            self.state.devices[record.id] = record
            return _copy(record)

    @staticmethod
    def _best(candidates: list[DeviceSession]) -> DeviceSession | None:
        if not candidates:
            return None
        candidates.sort(
            key=lambda s: (s.is_active, as_utc(s.last_access_at), s.id),
            reverse=True,
        )
        return _copy(candidates[0])

    def get_by_user_and_token(
        self, user_id: int, token_id: int | None, active_only: bool = True
    ) -> DeviceSession | None:
        with self.state.lock:
            return self._best(
                [
                    s
                    for s in self.state.devices.values()
                    if s.user_id == user_id
                    and s.token_id == token_id
                    and (s.is_active or not active_only)
                ]
            )

    def get_by_fingerprint(
        self, fingerprint: str, ip_address: str, active_only: bool = False
    ) -> DeviceSession | None:
        with self.state.lock:
            return self._best(
                [
                    s
                    for s in self.state.devices.values()
                    if s.device_fingerprint == fingerprint
                    and s.ip_address == ip_address
                    and (s.is_active or not active_only)
                ]
            )

    def update_last_access(self, session_id: int) -> None:
        with self.state.lock:
            record = self.state.devices.get(session_id)
            if record is not None:
                record.last_access_at = utcnow()

    def _set_active(self, session_id: int, active: bool) -> bool:
        with self.state.lock:
            record = self.state.devices.get(session_id)
            if record is None:
                return False
            record.is_active = active
            record.last_access_at = utcnow()
            return True

    def deactivate(self, session_id: int) -> bool:
        return self._set_active(session_id, False)

    def reactivate(self, session_id: int) -> bool:
        return self._set_active(session_id, True)

    def deactivate_for_device(self, fingerprint: str, ip_address: str) -> int:
        with self.state.lock:
            matched = [
                s
                for s in self.state.devices.values()
                if s.device_fingerprint == fingerprint
                and s.ip_address == ip_address
                and s.is_active
            ]
            for s in matched:
                s.is_active = False
            return len(matched)

    def validate_access(self, user_id: int, ip_address: str, fingerprint: str) -> bool:
        with self.state.lock:
            return any(
                s.user_id == user_id
                and s.ip_address == ip_address
                and s.device_fingerprint == fingerprint
                and s.is_active
                for s in self.state.devices.values()
            )

    def delete_for_user(self, user_id: int) -> int:
        with self.state.lock:
            doomed = [sid for sid, s in self.state.devices.items() if s.user_id == user_id]
            for sid in doomed:
                del self.state.devices[sid]
            return len(doomed)


class MemoryOTPRepository(OTPRepository):
    def __init__(self, state: _State):
        self.state = state

    def create(
        self, email: str, token_id: int | None, code_hash: str, expires_at: datetime
    ) -> OTPVerification:
        with self.state.lock:
            record = OTPVerification(
                id=next(self.state.otp_ids),
                email=email,
                token_id=token_id,
                code_hash=code_hash,
                expires_at=expires_at,
            )
            self.state.otps[record.id] = record
            return _copy(record)

    def get_pending(self, email: str, token_id: int | None) -> OTPVerification | None:
        with self.state.lock:
            pending = [
                o
                for o in self.state.otps.values()
                if o.email == email and o.token_id == token_id and not o.is_verified
            ]
            if not pending:
                return None
            return _copy(max(pending, key=lambda o: (as_utc(o.created_at), o.id)))

    def increment_attempts(self, otp_id: int) -> int:
        with self.state.lock:
            record = self.state.otps.get(otp_id)
            if record is None:
                return 0
            record.attempts += 1
            return record.attempts

    def mark_verified(self, otp_id: int) -> bool:
        with self.state.lock:
            record = self.state.otps.get(otp_id)
            if record is None:
                return False
            record.is_verified = True
            record.verified_at = utcnow()
            return True

    def cleanup_expired(self, now: datetime) -> int:
        with self.state.lock:
            doomed = [oid for oid, o in self.state.otps.items() if as_utc(o.expires_at) < now]
            for oid in doomed:
                del self.state.otps[oid]
            return len(doomed)


class MemoryServerSessionRepository(ServerSessionRepository):
    def __init__(self, state: _State):
        self.state = state

    def create(
        self, sid: str, user_id: int, token_id: int | None, expires_at: datetime
    ) -> ServerSession:
        with self.state.lock:
            record = ServerSession(
                id=sid, user_id=user_id, token_id=token_id, expires_at=expires_at
            )
            self.state.sessions[sid] = record
            return _copy(record)

    def get_active(self, sid: str, now: datetime) -> ServerSession | None:
        with self.state.lock:
            record = self.state.sessions.get(sid)
            if record is None or as_utc(record.expires_at) <= now:
                return None
            return _copy(record)

    def delete(self, sid: str) -> bool:
        with self.state.lock:
            return self.state.sessions.pop(sid, None) is not None

    def delete_for_user(self, user_id: int) -> int:
        with self.state.lock:
            doomed = [sid for sid, s in self.state.sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self.state.sessions[sid]
            return len(doomed)

    def cleanup_expired(self, now: datetime) -> int:
        with self.state.lock:
            doomed = [
                sid for sid, s in self.state.sessions.items() if as_utc(s.expires_at) <= now
            ]
            for sid in doomed:
                del self.state.sessions[sid]
            return len(doomed)


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self._state = _State()
        self.users = MemoryUserRepository(self._state)
        self.tokens = MemoryAccessTokenRepository(self._state)
        self.devices = MemoryDeviceSessionRepository(self._state)
        self.otps = MemoryOTPRepository(self._state)
        self.sessions = MemoryServerSessionRepository(self._state)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._state.lock:
            yield
