# catalog_access/services/token_service.py
import logging
from urllib.parse import urlencode

from catalog_access.core.config import Settings
from catalog_access.core.email_client import EmailSender
from catalog_access.core.errors import EmailDeliveryFailed, NotFound, ValidationError
from catalog_access.core.security import is_valid_email, normalize_email
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import (
    AccessTokenRead,
    RequestAccessOut,
    ResendTokenOut,
)

logger = logging.getLogger(__name__)


class TokenService:
    """
    Issuance of access links.

    Responsibilities:
      - mint a fresh token per request (never reuse one for the same email)
      - link it to an existing user when the email is already known
      - build the absolute access URL and hand it to the email collaborator
      - surface delivery failures to the caller (no silent success)

    Per-IP rate limiting happens at the router, before this service runs.
    """

    def __init__(self, settings: Settings, email_sender: EmailSender):
        self.settings = settings
        self.email_sender = email_sender

    def build_access_url(self, origin: str, token: str) -> str:
        path = "/" + self.settings.ACCESS_PATH.lstrip("/")
        return f"{origin.rstrip('/')}{path}?{urlencode({'token': token})}"

    def request_access(self, storage: Storage, email: str, origin: str) -> RequestAccessOut:
        """
        Issue a new access link for ``email`` and mail it.

        Raises:
            ValidationError(400): malformed email.
            EmailDeliveryFailed(500): the mail collaborator reported failure.
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError("Valid email is required")

        with storage.transaction():
            user = storage.users.get_by_email(email)
            issued = storage.tokens.create(email, user.id if user else None)

        logger.info(
            "Issued access token %s for %s (linked user: %s)",
            issued.token_id,
            email,
            user.id if user else None,
        )

        url = self.build_access_url(origin, issued.token)
        if not self.email_sender.send_access_link(email, url):
            logger.error("Access link email to %s failed (token %s)", email, issued.token_id)
            raise EmailDeliveryFailed()

        return RequestAccessOut(success=True, message="Access link sent to your email")

    def resend(self, storage: Storage, token_id: int, origin: str) -> ResendTokenOut:
        """
        Re-send the link of an existing token (admin only).

        Raises:
            NotFound(404): unknown token id.
            EmailDeliveryFailed(500): delivery failed.
        """
        record = storage.tokens.get_by_id(token_id)
        if record is None:
            raise NotFound("Access token not found")

        url = self.build_access_url(origin, record.token)
        if not self.email_sender.send_access_link(record.email, url):
            raise EmailDeliveryFailed()

        logger.info("Resent access token %s to %s", record.id, record.email)
        return ResendTokenOut(
            success=True,
            message="Access link resent successfully",
            token_url=url,
        )

    def list_tokens(self, storage: Storage) -> list[AccessTokenRead]:
        """All tokens for the admin panel, newest first, with user fields."""
        rows = []
        for token, user in storage.tokens.list_all():
            rows.append(
                AccessTokenRead(
                    id=token.id,
                    email=token.email,
                    user_id=token.user_id,
                    is_used=token.is_used,
                    ip_address=token.ip_address,
                    device_fingerprint=token.device_fingerprint,
                    created_at=token.created_at,
                    used_at=token.used_at,
                    user_name=user.name if user else None,
                    user_phone=user.phone if user else None,
                    user_email=user.email if user else None,
                )
            )
        return rows
