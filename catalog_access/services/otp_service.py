# catalog_access/services/otp_service.py
import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta

from catalog_access.core.clock import as_utc, utcnow
from catalog_access.core.config import Settings
from catalog_access.core.email_client import EmailSender
from catalog_access.core.errors import EmailDeliveryFailed
from catalog_access.core.security import generate_otp, hash_code, normalize_email
from catalog_access.repositories.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpCheckResult:
    success: bool
    attempts: int
    reason: str | None = None


class OtpService:
    """
    Email one-time-passcode building block.

    Not wired into token redemption: after the first redemption a token is
    protected by its IP binding alone. Kept so a later hardening step can
    require a code for first-use binding without a schema change.
    """

    def __init__(self, settings: Settings, email_sender: EmailSender | None = None):
        self.settings = settings
        self.email_sender = email_sender

    def issue(
        self, storage: Storage, email: str, token_id: int | None, send: bool = True
    ) -> str:
        """
        Store a new challenge and (optionally) mail the code.

        Returns the plain code; only its hash is persisted.
        """
        email = normalize_email(email)
        code = generate_otp()
        expires_at = utcnow() + timedelta(minutes=self.settings.OTP_TTL_MINUTES)

        with storage.transaction():
            storage.otps.create(email, token_id, hash_code(code), expires_at)

        if send:
            if self.email_sender is None:
                raise RuntimeError("OtpService needs an email sender to send codes")
            if not self.email_sender.send_otp(email, code, self.settings.OTP_TTL_MINUTES):
                raise EmailDeliveryFailed("Failed to send verification code")

        logger.info("Issued verification code for %s (token %s)", email, token_id)
        return code

    def verify(
        self, storage: Storage, email: str, token_id: int | None, code: str
    ) -> OtpCheckResult:
        email = normalize_email(email)
        challenge = storage.otps.get_pending(email, token_id)
        if challenge is None:
            return OtpCheckResult(success=False, attempts=0, reason="not_found")

        if as_utc(challenge.expires_at) <= utcnow():
            return OtpCheckResult(success=False, attempts=challenge.attempts, reason="expired")

        if challenge.attempts >= self.settings.OTP_MAX_ATTEMPTS:
            return OtpCheckResult(
                success=False, attempts=challenge.attempts, reason="too_many_attempts"
            )

        with storage.transaction():
            attempts = storage.otps.increment_attempts(challenge.id)
            matched = hmac.compare_digest(challenge.code_hash, hash_code(code or ""))
            if matched:
                storage.otps.mark_verified(challenge.id)

        if not matched:
            logger.info("Wrong verification code for %s (attempt %s)", email, attempts)
            return OtpCheckResult(success=False, attempts=attempts, reason="invalid_code")
        return OtpCheckResult(success=True, attempts=attempts)
