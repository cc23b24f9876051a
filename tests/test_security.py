import pytest

from catalog_access.core.errors import ValidationError
from catalog_access.core.security import (
    fingerprint,
    generate_access_token,
    generate_otp,
    hash_password,
    is_valid_email,
    is_valid_fingerprint,
    normalize_phone,
    sanitize_text,
    verify_password,
)


def test_fingerprint_is_deterministic():
    assert fingerprint("UA1", "1.1.1.1", "en-US") == fingerprint("UA1", "1.1.1.1", "en-US")


def test_fingerprint_is_sha256_hex():
    assert is_valid_fingerprint(fingerprint("UA1", "1.1.1.1"))


@pytest.mark.parametrize(
    "other",
    [
        ("UA2", "1.1.1.1", "en-US"),
        ("UA1", "1.1.1.2", "en-US"),
        ("UA1", "1.1.1.1", "de-DE"),
    ],
)
def test_changing_any_input_changes_fingerprint(other):
    assert fingerprint("UA1", "1.1.1.1", "en-US") != fingerprint(*other)


def test_missing_accept_language_hashes_as_empty_string():
    assert fingerprint("UA1", "1.1.1.1") == fingerprint("UA1", "1.1.1.1", "")
    assert fingerprint("UA1", "1.1.1.1", None) == fingerprint("UA1", "1.1.1.1", "")
    assert fingerprint("UA1", "1.1.1.1") != fingerprint("UA1", "1.1.1.1", "undefined")


def test_access_tokens_are_long_and_unique():
    tokens = {generate_access_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(t) == 64 for t in tokens)


def test_otp_is_six_digits():
    for _ in range(20):
        code = generate_otp()
        assert len(code) == 6 and code.isdigit()


@pytest.mark.parametrize(
    "raw",
    ["9876543210", "09876543210", "919876543210", "+91 98765 43210", "98765-43210"],
)
def test_normalize_phone_adds_country_code(raw):
    assert normalize_phone(raw, "91") == "+919876543210"


def test_normalize_phone_keeps_explicit_international_prefix():
    assert normalize_phone("+44 20 7946 0958", "91") == "+442079460958"


@pytest.mark.parametrize("raw", ["", "abc", "12"])
def test_normalize_phone_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        normalize_phone(raw, "91")


def test_email_validation():
    assert is_valid_email("alice@example.com")
    assert not is_valid_email("alice@example")
    assert not is_valid_email("not an email")


def test_sanitize_text_strips_markup():
    assert sanitize_text("  <b>Pune</b> ") == "bPune/b"


def test_password_hash_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong-pass", hashed)
