# catalog_access/core/auth.py
"""
Authentication chain for protected routes.

Identity is resolved once per request into an explicit AuthSource:

  1. SESSION             - a valid server-side session cookie
  2. DEVICE_FINGERPRINT  - no session, but an ACTIVE device session matches
                           the request's fingerprint + IP ("silent resume");
                           the session cookie is restored on the response
  3. NONE                - 401 with requiresToken so the client routes to
                           the request-access flow

Authorization then applies, in order:

  4. admins bypass every token/device check
  5. non-admins must carry a token id           -> 401 requiresToken
  6. non-admins must match an active device
     session on (user, IP, fingerprint)         -> 403 on mismatch
"""
import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request, Response

from catalog_access.core.config import Settings
from catalog_access.core.errors import DeviceMismatch, Forbidden, Unauthenticated
from catalog_access.core.security import DeviceContext, device_context
from catalog_access.core.sessions import SessionData, establish_session, load_session
from catalog_access.database import get_storage
from catalog_access.dependencies import get_app_settings
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage

logger = logging.getLogger(__name__)


class AuthSource(str, Enum):
    SESSION = "session"
    DEVICE_FINGERPRINT = "device_fingerprint"
    NONE = "none"


@dataclass(frozen=True)
class Identity:
    source: AuthSource
    user_id: int | None = None
    token_id: int | None = None
    device_session_id: int | None = None


ANONYMOUS = Identity(source=AuthSource.NONE)


def resolve_identity(
    storage: Storage,
    session: SessionData | None,
    device: DeviceContext,
) -> Identity:
    """
    Pick the identity source for a request (steps 1-3). Read-only.

    A session whose user no longer exists is ignored, so the device
    binding still gets a chance to resume the caller.
    """
    if session is not None:
        if storage.users.get_by_id(session.user_id) is not None:
            return Identity(
                source=AuthSource.SESSION,
                user_id=session.user_id,
                token_id=session.token_id,
            )
        logger.info("Session %s... points at missing user %s", session.sid[:8], session.user_id)

    bound = storage.devices.get_by_fingerprint(device.fingerprint, device.ip, active_only=True)
    if bound is not None:
        return Identity(
            source=AuthSource.DEVICE_FINGERPRINT,
            user_id=bound.user_id,
            token_id=bound.token_id,
            device_session_id=bound.id,
        )

    return ANONYMOUS


def authorize(storage: Storage, identity: Identity, device: DeviceContext) -> User:
    """
    Apply steps 3-6 to a resolved identity and return the user.

    Raises:
        Unauthenticated: no identity, unknown user, or missing token id.
        DeviceMismatch: non-admin seen from an unbound IP/fingerprint.
    """
    if identity.source is AuthSource.NONE or identity.user_id is None:
        raise Unauthenticated("Authentication required")

    user = storage.users.get_by_id(identity.user_id)
    if user is None:
        raise Unauthenticated("User not found")

    if user.is_admin:
        return user

    if identity.token_id is None:
        raise Unauthenticated("Token-based access required")

    if not storage.devices.validate_access(user.id, device.ip, device.fingerprint):
        logger.warning(
            "Device mismatch for user %s from %s (fingerprint %s...)",
            user.id,
            device.ip,
            device.short_fingerprint,
        )
        raise DeviceMismatch(
            "Access denied. This session is bound to a different device or location."
        )
    return user


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_session_data(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> SessionData | None:
    return load_session(request, storage, settings)


def get_identity(
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
    device: DeviceContext = Depends(device_context),
    current: SessionData | None = Depends(get_session_data),
) -> Identity:
    """
    Resolve the caller's identity.

    On the device-fingerprint path the server session is restored
    transparently so the next request arrives with a cookie again.
    """
    identity = resolve_identity(storage, current, device)

    if identity.source is AuthSource.DEVICE_FINGERPRINT:
        logger.info(
            "Restoring session for user %s from device %s... at %s",
            identity.user_id,
            device.short_fingerprint,
            device.ip,
        )
        with storage.transaction():
            storage.devices.update_last_access(identity.device_session_id)
        establish_session(
            response,
            storage,
            settings,
            user_id=identity.user_id,
            token_id=identity.token_id,
        )
    elif identity.source is AuthSource.NONE:
        logger.debug(
            "No session or active device binding for %s... at %s",
            device.short_fingerprint,
            device.ip,
        )
    return identity


def require_token_auth(
    identity: Identity = Depends(get_identity),
    storage: Storage = Depends(get_storage),
    device: DeviceContext = Depends(device_context),
) -> User:
    """
    Enforce the full chain: identity + admin bypass + token + device binding.

    Attach to every catalog route that should only be reachable from a
    bound device.

    Returns:
        The authenticated User.
    """
    user = authorize(storage, identity, device)

    if not user.is_admin and identity.source is AuthSource.SESSION:
        bound = storage.devices.get_by_user_and_token(user.id, identity.token_id)
        if bound is not None:
            with storage.transaction():
                storage.devices.update_last_access(bound.id)
    return user


def require_admin(
    identity: Identity = Depends(get_identity),
    storage: Storage = Depends(get_storage),
) -> User:
    """
    Enforce admin role.

    Raises:
        Unauthenticated(401): no session.
        Forbidden(403): authenticated but not an admin.
    """
    if identity.source is AuthSource.NONE or identity.user_id is None:
        raise Unauthenticated("Authentication required", requires_token=False)

    user = storage.users.get_by_id(identity.user_id)
    if user is None:
        raise Unauthenticated("User not found", requires_token=False)
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
