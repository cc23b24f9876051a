# catalog_access/services/profile_service.py
import logging

from catalog_access.core.config import Settings
from catalog_access.core.errors import DeviceMismatch, NotFound, ValidationError
from catalog_access.core.security import DeviceContext, normalize_phone, sanitize_text
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import CompleteProfileIn

logger = logging.getLogger(__name__)


class ProfileService:
    """
    Profile completion: promotes a token-bound visitor into a named user.

    Rules:
      - the token must exist and already be bound (redeemed once)
      - the caller must be on the token's bound IP
      - the email must be the one the link was issued to
      - the phone handle is normalized and must not belong to someone else
      - the device session reuses the IP/fingerprint stored on the token,
        never values re-derived from this request
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def complete_profile(
        self, storage: Storage, payload: CompleteProfileIn, device: DeviceContext
    ) -> User:
        """
        Create or update the user behind ``payload.token_id``.

        The caller establishes the authenticated session afterwards.

        Raises:
            NotFound(404): unknown token id.
            ValidationError(400): unbound token, email/phone conflicts.
            DeviceMismatch(403): request not coming from the bound IP.
        """
        token = storage.tokens.get_by_id(payload.token_id)
        if token is None:
            raise NotFound("Access token not found")
        if not token.is_bound:
            raise ValidationError("Open your access link before completing your profile")
        if token.ip_address != device.ip:
            raise DeviceMismatch()
        if payload.email != token.email:
            raise ValidationError("Email does not match the access link")

        name = sanitize_text(payload.name)
        city = sanitize_text(payload.city)
        if not name or not city:
            raise ValidationError("Name and city are required")
        phone = normalize_phone(payload.phone, self.settings.PHONE_COUNTRY_CODE)

        with storage.transaction():
            user = storage.users.get_by_email(payload.email)
            if user is None:
                # Legacy records were keyed by phone only and carry no email
                legacy = storage.users.get_by_phone(phone)
                if legacy is not None and not legacy.email:
                    user = legacy

            if token.user_id is not None and (user is None or token.user_id != user.id):
                raise ValidationError("Access link belongs to a different user")

            phone_owner = storage.users.get_by_phone(phone)
            if phone_owner is not None and (user is None or phone_owner.id != user.id):
                raise ValidationError("Phone number is already registered")

            if user is None:
                user = storage.users.create(
                    User(
                        name=name,
                        phone=phone,
                        email=payload.email,
                        city=city,
                        profile_completed=True,
                    )
                )
                created = True
            else:
                user = storage.users.complete_profile(
                    user.id, name=name, phone=phone, city=city, email=payload.email
                )
                created = False

            if token.user_id is None:
                storage.tokens.link_to_user(token.id, user.id)

            session = storage.devices.get_by_user_and_token(user.id, token.id, active_only=False)
            if session is None:
                storage.devices.create(
                    user.id,
                    token.id,
                    token.ip_address,
                    token.device_fingerprint,
                    device.user_agent,
                )
            elif not session.is_active:
                storage.devices.reactivate(session.id)
            else:
                storage.devices.update_last_access(session.id)

            user_id = user.id

        logger.info(
            "Profile completed for user %s (%s) via token %s",
            user_id,
            "created" if created else "updated",
            token.id,
        )
        # Fresh read after commit
        return storage.users.get_by_id(user_id)
