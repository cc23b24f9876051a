# catalog_access/services/auth_service.py
import logging

from catalog_access.core.auth import AuthSource, Identity
from catalog_access.core.config import Settings
from catalog_access.core.errors import NotFound, Unauthenticated
from catalog_access.core.security import DeviceContext, normalize_phone, verify_password
from catalog_access.models.device_session import DeviceSession
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import UserSummary

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid phone number or password"


class AuthService:
    """
    Session-level operations around an already bound device.

    Responsibilities:
      - resolve the caller for /auth/me
      - soft logout (device binding survives, only deactivated)
      - "log back in as <name>" from the same device
      - password login for admins

    Cookies are set by the routers; this service only decides who.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def current_user(self, storage: Storage, identity: Identity) -> User:
        if identity.source is AuthSource.NONE or identity.user_id is None:
            raise Unauthenticated("Not authenticated")

        user = storage.users.get_by_id(identity.user_id)
        if user is None:
            raise Unauthenticated("User not found")
        return user

    def logout(self, storage: Storage, device: DeviceContext) -> UserSummary | None:
        """
        Deactivate the caller's device sessions and report who they belonged to.

        Every active session on this fingerprint + IP is switched off (a
        device that redeemed several links holds several), otherwise the
        next request would silently resume through one of them. The rows
        are kept so login_bound_device() can resume the most recent later.
        """
        bound = storage.devices.get_by_fingerprint(device.fingerprint, device.ip, active_only=False)
        if bound is None:
            return None

        with storage.transaction():
            count = storage.devices.deactivate_for_device(device.fingerprint, device.ip)
        if count:
            logger.info(
                "Deactivated %s device session(s) for user %s (%s...)",
                count,
                bound.user_id,
                device.short_fingerprint,
            )

        user = storage.users.get_by_id(bound.user_id)
        return UserSummary.from_user(user) if user else None

    def login_bound_device(
        self, storage: Storage, device: DeviceContext
    ) -> tuple[User, DeviceSession]:
        """
        Resume the binding for this fingerprint + IP, active or not.

        Raises:
            Unauthenticated(401, requiresToken): nothing bound to this device.
            NotFound(404): the bound user no longer exists.
        """
        bound = storage.devices.get_by_fingerprint(device.fingerprint, device.ip, active_only=False)
        if bound is None:
            raise Unauthenticated("No bound user found for this device")

        user = storage.users.get_by_id(bound.user_id)
        if user is None:
            raise NotFound("User not found")

        with storage.transaction():
            if bound.is_active:
                storage.devices.update_last_access(bound.id)
            else:
                storage.devices.reactivate(bound.id)

        logger.info("User %s resumed device session %s", user.id, bound.id)
        return user, bound

    def admin_login(self, storage: Storage, phone: str, password: str) -> User:
        """
        Verify an admin's phone + password.

        Raises:
            ValidationError(400): malformed phone number.
            Unauthenticated(401): unknown phone, not an admin, or bad password.
        """
        normalized = normalize_phone(phone, self.settings.PHONE_COUNTRY_CODE)
        user = storage.users.get_by_phone(normalized)

        if user is None or not user.is_admin or not user.password_hash:
            logger.warning("Admin login refused for %s", normalized)
            raise Unauthenticated(INVALID_CREDENTIALS, requires_token=False)

        if not verify_password(password, user.password_hash):
            logger.warning("Wrong admin password for user %s", user.id)
            raise Unauthenticated(INVALID_CREDENTIALS, requires_token=False)

        logger.info("Admin %s logged in", user.id)
        return user
