# catalog_access/core/security.py
"""
Security helpers shared by the access-control services.

  - device fingerprint derivation (a convenience hash, not attestation)
  - client IP / device context extraction from requests
  - CSPRNG token and OTP generation
  - input normalization (email, phone handle, free text)
  - admin password hashing (pwdlib)
"""
import hashlib
import re
import secrets
from dataclasses import dataclass

from fastapi import Request
from pwdlib import PasswordHash

from catalog_access.core.errors import ValidationError

password_hash = PasswordHash.recommended()

# 32 random bytes -> 64 hex chars
ACCESS_TOKEN_BYTES = 32

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UNSAFE_CHARS_RE = re.compile(r"[<>\"'%;()&+]")
_FINGERPRINT_RE = re.compile(r"^[a-f0-9]{64}$")


def fingerprint(user_agent: str, ip: str, accept_language: str | None = None) -> str:
    """
    Derive the device fingerprint for a (user-agent, IP, accept-language) triple.

    SHA-256 over ``"{user_agent}|{ip}|{accept_language}"``. No salt and no
    secret: the value must be reproducible across processes. A missing
    accept-language hashes as the empty string.
    """
    data = f"{user_agent or ''}|{ip or ''}|{accept_language or ''}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def is_valid_fingerprint(value: str) -> bool:
    return bool(_FINGERPRINT_RE.match(value or ""))


def get_client_ip(request: Request) -> str:
    """
    Determine the client's IP address from the request.

    Prefers the first hop of ``X-Forwarded-For`` (deployments behind a
    reverse proxy), then ``X-Real-IP``, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "127.0.0.1"


@dataclass(frozen=True)
class DeviceContext:
    """What we know about the calling device, recomputed on every request."""

    ip: str
    user_agent: str
    accept_language: str
    fingerprint: str

    @property
    def short_fingerprint(self) -> str:
        return self.fingerprint[:8]


def device_context(request: Request) -> DeviceContext:
    """FastAPI dependency: derive the caller's IP and fingerprint from headers."""
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent", "")
    accept_language = request.headers.get("accept-language", "")
    return DeviceContext(
        ip=ip,
        user_agent=user_agent[:255],
        accept_language=accept_language,
        fingerprint=fingerprint(user_agent, ip, accept_language),
    )


# ---------------------------------------------------------------------------
# Random material
# ---------------------------------------------------------------------------


def generate_access_token() -> str:
    return secrets.token_hex(ACCESS_TOKEN_BYTES)


def generate_session_id() -> str:
    return secrets.token_urlsafe(48)


def generate_otp() -> str:
    """6-digit numeric code from the OS CSPRNG."""
    return f"{secrets.randbelow(900000) + 100000}"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def sanitize_text(value: str) -> str:
    """Trim and drop characters commonly used in markup/SQL injection."""
    return _UNSAFE_CHARS_RE.sub("", (value or "").strip())


def normalize_phone(raw: str, country_code: str) -> str:
    """
    Normalize a phone handle to ``+<country code><number>``.

    Examples (country_code="91"):
        "9876543210"     -> "+919876543210"
        "09876543210"    -> "+919876543210"
        "919876543210"   -> "+919876543210"
        "+91 98765 43210" -> "+919876543210"

    Raises:
        ValidationError: if the result is not a plausible E.164 number.
    """
    value = (raw or "").strip()
    has_plus = value.startswith("+")
    digits = re.sub(r"\D", "", value)

    if not has_plus:
        digits = digits.lstrip("0")
        # Already carries the country code (cc + 10 digit subscriber number)
        if not (digits.startswith(country_code) and len(digits) == len(country_code) + 10):
            digits = country_code + digits

    if not 8 <= len(digits) <= 15:
        raise ValidationError("Invalid phone number")
    return f"+{digits}"


def hash_password(password: str) -> str:
    return password_hash.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return password_hash.verify(plain_password, hashed_password)
