# catalog_access/services/redemption_service.py
import logging
from dataclasses import dataclass

from catalog_access.core.errors import DeviceMismatch, InvalidAccessToken, ValidationError
from catalog_access.core.security import DeviceContext
from catalog_access.models.access_token import AccessToken
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import TokenValidationResult, UserSummary

logger = logging.getLogger(__name__)

WELCOME_BACK = "Welcome back! Token validated successfully"
COMPLETE_PROFILE = "Please complete your profile"


@dataclass(frozen=True)
class Redemption:
    """
    Outcome of validate_token.

    ``login_user_id`` is set when the caller should be given an
    authenticated session right away (the router owns the cookie).
    """

    result: TokenValidationResult
    login_user_id: int | None = None


class RedemptionService:
    """
    Redeems access links.

    A token is UNBOUND until its first redemption, which binds it to the
    redeeming IP and fingerprint. From then on it stays redeemable forever,
    but only from that IP:

      - same IP          -> returning visit, resume without re-registering
      - different IP     -> 403, token untouched

    Binding-on-first-use trades single-use strictness for usability on
    purpose; tokens are NOT consumed by redemption.
    """

    def validate_token(self, storage: Storage, token: str, device: DeviceContext) -> Redemption:
        """
        Raises:
            ValidationError(400): empty token.
            InvalidAccessToken(401): unknown token.
            DeviceMismatch(403): token bound to another IP.
        """
        if not token:
            raise ValidationError("Token is required")

        record = storage.tokens.get_by_token(token)
        if record is None:
            raise InvalidAccessToken()

        if record.is_bound and record.ip_address != device.ip:
            logger.warning(
                "Token %s bound to %s presented from %s",
                record.id,
                record.ip_address,
                device.ip,
            )
            raise DeviceMismatch()

        if not record.is_bound:
            return self._first_use(storage, record, device)
        return self._returning_visit(storage, record, device)

    # -------- UNBOUND -> BOUND --------

    def _first_use(self, storage: Storage, record: AccessToken, device: DeviceContext) -> Redemption:
        user: User | None = None

        with storage.transaction():
            bound = storage.tokens.mark_used(record.id, device.ip, device.fingerprint)
            if bound:
                if record.user_id is not None:
                    user = storage.users.get_by_id(record.user_id)
                else:
                    user = storage.users.get_by_email(record.email)
                    if user is not None:
                        storage.tokens.link_to_user(record.id, user.id)

                if user is not None:
                    storage.devices.create(
                        user.id,
                        record.id,
                        device.ip,
                        device.fingerprint,
                        device.user_agent,
                    )

        if not bound:
            # Another request bound the token between our read and the
            # conditional update; re-evaluate against the stored binding.
            logger.info("Token %s was bound concurrently, re-evaluating", record.id)
            return self.validate_token(storage, record.token, device)

        logger.info(
            "Token %s bound to %s (fingerprint %s...), user %s",
            record.id,
            device.ip,
            device.short_fingerprint,
            user.id if user else None,
        )
        return self._outcome(record, user)

    # -------- BOUND, same IP --------

    def _returning_visit(
        self, storage: Storage, record: AccessToken, device: DeviceContext
    ) -> Redemption:
        if record.user_id is None:
            return self._outcome(record, None)

        user = storage.users.get_by_id(record.user_id)
        if user is not None:
            with storage.transaction():
                self._touch_binding(storage, record, user.id, device)
        return self._outcome(record, user)

    def _touch_binding(
        self, storage: Storage, record: AccessToken, user_id: int, device: DeviceContext
    ) -> None:
        """
        Refresh the device session of a returning visitor.

        A session deactivated by logout is reactivated; a missing one is
        recreated from the token's stored binding (never from this request).
        """
        session = storage.devices.get_by_user_and_token(user_id, record.id, active_only=False)
        if session is None:
            storage.devices.create(
                user_id,
                record.id,
                record.ip_address,
                record.device_fingerprint,
                device.user_agent,
            )
        elif not session.is_active:
            storage.devices.reactivate(session.id)
        else:
            storage.devices.update_last_access(session.id)

    def _outcome(self, record: AccessToken, user: User | None) -> Redemption:
        requires_profile = user is None or not user.profile_completed
        login_user_id = None if requires_profile else user.id
        return Redemption(
            result=TokenValidationResult(
                success=True,
                requires_profile_completion=requires_profile,
                email=record.email,
                token_id=record.id,
                user=UserSummary.from_user(user) if user else None,
                authenticated=login_user_id is not None,
                message=COMPLETE_PROFILE if requires_profile else WELCOME_BACK,
            ),
            login_user_id=login_user_id,
        )
