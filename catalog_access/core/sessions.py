# catalog_access/core/sessions.py
"""
Server-side sessions keyed by an HTTP-only cookie.

The cookie carries a JWT (HS256, SESSION_SECRET) whose only claim besides
``exp`` is ``sid``, the id of a ServerSession record. The record holds the
payload (user_id, token_id). Tampered, expired or orphaned cookies all
resolve to "no session".

The device fingerprint is never stored client-side; it is recomputed from
headers on every request.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request, Response
from jose import JWTError, jwt

from catalog_access.core.clock import utcnow
from catalog_access.core.config import Settings
from catalog_access.core.security import generate_session_id
from catalog_access.repositories.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionData:
    sid: str
    user_id: int
    token_id: int | None


def encode_session_cookie(settings: Settings, sid: str) -> str:
    expire = utcnow() + timedelta(hours=settings.SESSION_TTL_HOURS)
    return jwt.encode(
        {"sid": sid, "exp": expire},
        settings.SESSION_SECRET,
        algorithm=settings.SESSION_ALG,
    )


def decode_session_cookie(settings: Settings, value: str) -> str | None:
    """Return the sid in a signed cookie, or None if it is invalid/expired."""
    try:
        claims = jwt.decode(
            value,
            settings.SESSION_SECRET,
            algorithms=[settings.SESSION_ALG],
        )
    except JWTError:
        return None
    sid = claims.get("sid")
    return sid if isinstance(sid, str) else None


def load_session(request: Request, storage: Storage, settings: Settings) -> SessionData | None:
    raw = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not raw:
        return None

    sid = decode_session_cookie(settings, raw)
    if sid is None:
        logger.info("Ignoring invalid session cookie")
        return None

    record = storage.sessions.get_active(sid, utcnow())
    if record is None:
        return None
    return SessionData(sid=record.id, user_id=record.user_id, token_id=record.token_id)


def establish_session(
    response: Response,
    storage: Storage,
    settings: Settings,
    *,
    user_id: int,
    token_id: int | None,
    previous: SessionData | None = None,
) -> SessionData:
    """
    Persist a new session record and set its cookie on ``response``.

    The sid is rotated on every call; ``previous`` is removed. Runs inside
    its own transaction so the record exists before the response is sent.
    """
    sid = generate_session_id()
    expires_at = utcnow() + timedelta(hours=settings.SESSION_TTL_HOURS)

    with storage.transaction():
        if previous is not None:
            storage.sessions.delete(previous.sid)
        storage.sessions.create(sid, user_id, token_id, expires_at)

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=encode_session_cookie(settings, sid),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.SESSION_TTL_HOURS * 3600,
        path="/",
    )
    return SessionData(sid=sid, user_id=user_id, token_id=token_id)


def destroy_session(
    response: Response,
    storage: Storage,
    settings: Settings,
    current: SessionData | None,
) -> None:
    if current is not None:
        with storage.transaction():
            storage.sessions.delete(current.sid)
    response.delete_cookie(
        settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
