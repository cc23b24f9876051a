import pytest

from catalog_access.core.errors import DeviceMismatch
from catalog_access.core.security import DeviceContext, fingerprint
from catalog_access.models.user import User
from catalog_access.services.redemption_service import RedemptionService

VALIDATE = "/api/auth/validate-token"


def _redeem(client, token):
    return client.get(VALIDATE, params={"token": token})


def _device(ip="1.1.1.1", ua="UA1") -> DeviceContext:
    return DeviceContext(ip=ip, user_agent=ua, accept_language="", fingerprint=fingerprint(ua, ip))


# -------- Issuance --------


def test_request_access_mails_a_link(make_client, mailer, storage):
    res = make_client().post("/api/auth/request-access", json={"email": " Alice@Example.com "})

    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "Access link sent to your email"}
    assert mailer.sent[-1]["to"] == "alice@example.com"
    assert "http://catalog.test/access?token=" in mailer.sent[-1]["text"]

    record = storage.tokens.get_by_token(mailer.last_token())
    assert record.email == "alice@example.com"
    assert not record.is_bound


def test_request_access_rejects_bad_email(make_client, mailer):
    res = make_client().post("/api/auth/request-access", json={"email": "not-an-email"})
    assert res.status_code == 400
    assert res.json()["error"] is True
    assert mailer.sent == []


def test_request_access_reports_email_failure(make_client, mailer):
    mailer.succeed = False
    res = make_client().post("/api/auth/request-access", json={"email": "alice@example.com"})
    assert res.status_code == 500
    assert res.json() == {"error": True, "message": "Failed to send access link email"}


def test_request_access_is_rate_limited_per_ip(make_client):
    client = make_client(ip="7.7.7.7")
    for _ in range(5):
        assert client.post("/api/auth/request-access", json={"email": "a@example.com"}).status_code == 200

    res = client.post("/api/auth/request-access", json={"email": "a@example.com"})
    assert res.status_code == 429
    assert res.json()["retryAfter"] > 0
    assert "Retry-After" in res.headers

    other = make_client(ip="7.7.7.8")
    assert other.post("/api/auth/request-access", json={"email": "a@example.com"}).status_code == 200


def test_each_request_mints_a_new_token(issue_token):
    assert issue_token() != issue_token()


# -------- Redemption --------


def test_unknown_token_is_401_with_requires_token(client):
    res = _redeem(client, "f" * 64)
    assert res.status_code == 401
    assert res.json()["requiresToken"] is True


def test_missing_token_is_400(client):
    assert client.get(VALIDATE).status_code == 400


def test_first_use_binds_token(make_client, issue_token, storage):
    token = issue_token()
    res = _redeem(make_client("1.1.1.1", "UA1"), token)

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["requiresProfileCompletion"] is True
    assert body["authenticated"] is False
    assert body["email"] == "alice@example.com"
    assert body["user"] is None

    record = storage.tokens.get_by_token(token)
    assert record.is_used
    assert record.ip_address == "1.1.1.1"
    assert record.device_fingerprint == fingerprint("UA1", "1.1.1.1")


def test_bound_token_rejected_from_other_ip_without_state_change(make_client, issue_token, storage):
    token = issue_token()
    assert _redeem(make_client("1.1.1.1", "UA1"), token).status_code == 200
    before = storage.tokens.get_by_token(token)

    for ip in ("2.2.2.2", "3.3.3.3"):
        res = _redeem(make_client(ip, "UA1"), token)
        assert res.status_code == 403
        assert res.json()["deviceMismatch"] is True

    after = storage.tokens.get_by_token(token)
    assert after.ip_address == before.ip_address == "1.1.1.1"
    assert after.device_fingerprint == before.device_fingerprint
    assert after.used_at == before.used_at


def test_same_ip_before_profile_still_requires_profile(make_client, issue_token):
    token = issue_token()
    client = make_client("1.1.1.1", "UA1")
    _redeem(client, token)

    res = _redeem(client, token)
    assert res.status_code == 200
    assert res.json()["requiresProfileCompletion"] is True


def test_full_scenario(make_client, issue_token, storage):
    token = issue_token("alice@example.com")
    device = make_client("1.1.1.1", "UA1")

    first = _redeem(device, token)
    assert first.json()["requiresProfileCompletion"] is True
    token_id = first.json()["tokenId"]

    assert _redeem(make_client("2.2.2.2", "UA1"), token).status_code == 403

    res = device.post(
        "/api/auth/complete-profile",
        json={
            "name": "Alice",
            "phone": "9876543210",
            "city": "Pune",
            "email": "alice@example.com",
            "tokenId": token_id,
        },
    )
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["profileCompleted"] is True
    assert user["phone"] == "+919876543210"

    session = storage.devices.get_by_user_and_token(user["id"], token_id)
    assert session.ip_address == "1.1.1.1"
    assert session.device_fingerprint == fingerprint("UA1", "1.1.1.1")
    assert storage.tokens.get_by_id(token_id).user_id == user["id"]

    # Same device, cookies gone: the link logs straight in
    again = _redeem(make_client("1.1.1.1", "UA1"), token)
    assert again.status_code == 200
    assert again.json()["requiresProfileCompletion"] is False
    assert again.json()["authenticated"] is True
    assert again.json()["user"]["name"] == "Alice"
    assert "catalog_sid" in again.cookies


def test_repeated_redemption_never_asks_for_profile_again(onboard, make_client):
    _, token, _ = onboard()
    for _ in range(3):
        res = _redeem(make_client("1.1.1.1", "UA1"), token)
        assert res.json()["requiresProfileCompletion"] is False


def test_known_email_is_linked_and_logged_in_on_first_use(onboard, issue_token, make_client, storage):
    _, _, profile = onboard()
    token = issue_token("alice@example.com")

    record = storage.tokens.get_by_token(token)
    assert record.user_id == profile["user"]["id"]

    # New link opened on a new device: bound there, no profile step
    res = _redeem(make_client("4.4.4.4", "UA-phone"), token)
    assert res.status_code == 200
    assert res.json()["requiresProfileCompletion"] is False
    assert res.json()["authenticated"] is True

    devices = storage.devices.get_by_fingerprint(fingerprint("UA-phone", "4.4.4.4"), "4.4.4.4")
    assert devices.user_id == profile["user"]["id"]


def test_returning_visit_reactivates_logged_out_binding(onboard, make_client, storage):
    client, token, profile = onboard()
    client.post("/api/auth/logout")
    fp = fingerprint("UA1", "1.1.1.1")
    assert storage.devices.get_by_fingerprint(fp, "1.1.1.1", active_only=True) is None

    res = _redeem(make_client("1.1.1.1", "UA1"), token)
    assert res.json()["authenticated"] is True
    assert storage.devices.get_by_fingerprint(fp, "1.1.1.1", active_only=True) is not None


# -------- Concurrent first use --------


def _bind_behind_our_back(monkeypatch, storage, token, ip, ua):
    """
    Hand validate_token a stale, still unbound read of ``token`` while the
    stored row gets bound to ``ip`` in the meantime.
    """
    stale = storage.tokens.get_by_token(token)
    with storage.transaction():
        assert storage.tokens.mark_used(stale.id, ip, fingerprint(ua, ip))

    real_lookup = storage.tokens.get_by_token
    calls = []

    def lookup(value):
        calls.append(value)
        return stale if len(calls) == 1 else real_lookup(value)

    monkeypatch.setattr(storage.tokens, "get_by_token", lookup)
    return calls


def test_losing_the_bind_to_another_ip_is_a_mismatch(monkeypatch, storage, issue_token):
    token = issue_token()
    calls = _bind_behind_our_back(monkeypatch, storage, token, "2.2.2.2", "UA2")

    with pytest.raises(DeviceMismatch):
        RedemptionService().validate_token(storage, token, _device("1.1.1.1", "UA1"))

    # Re-evaluated against the stored row, which kept the winner's binding
    assert len(calls) == 2
    record = storage.tokens.get_by_token(token)
    assert record.ip_address == "2.2.2.2"
    assert record.device_fingerprint == fingerprint("UA2", "2.2.2.2")


def test_losing_the_bind_to_the_same_ip_is_a_returning_visit(monkeypatch, storage, issue_token):
    token = issue_token()
    calls = _bind_behind_our_back(monkeypatch, storage, token, "1.1.1.1", "UA1")

    redemption = RedemptionService().validate_token(storage, token, _device("1.1.1.1", "UA1"))

    assert len(calls) == 2
    assert redemption.result.success is True
    assert redemption.result.requires_profile_completion is True
    assert redemption.login_user_id is None
    assert storage.tokens.get_by_token(token).ip_address == "1.1.1.1"


# -------- Profile completion --------


def _profile_payload(token_id, **overrides):
    payload = {
        "name": "Alice",
        "phone": "9876543210",
        "city": "Pune",
        "email": "alice@example.com",
        "tokenId": token_id,
    }
    payload.update(overrides)
    return payload


def test_complete_profile_requires_non_empty_fields(make_client, issue_token):
    client = make_client()
    token_id = _redeem(client, issue_token()).json()["tokenId"]

    res = client.post("/api/auth/complete-profile", json=_profile_payload(token_id, name="   "))
    assert res.status_code == 400


def test_complete_profile_sets_session(make_client, issue_token):
    client = make_client()
    token_id = _redeem(client, issue_token()).json()["tokenId"]

    assert client.post("/api/auth/complete-profile", json=_profile_payload(token_id)).status_code == 200

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["source"] == "session"
    assert me.json()["user"]["name"] == "Alice"


def test_complete_profile_from_other_ip_is_rejected(make_client, issue_token):
    token_id = _redeem(make_client("1.1.1.1"), issue_token()).json()["tokenId"]

    res = make_client("2.2.2.2").post("/api/auth/complete-profile", json=_profile_payload(token_id))
    assert res.status_code == 403


def test_complete_profile_for_unredeemed_token(make_client, issue_token, storage):
    token_id = storage.tokens.get_by_token(issue_token()).id
    res = make_client().post("/api/auth/complete-profile", json=_profile_payload(token_id))
    assert res.status_code == 400


def test_complete_profile_unknown_token(make_client):
    res = make_client().post("/api/auth/complete-profile", json=_profile_payload(999))
    assert res.status_code == 404


def test_complete_profile_email_must_match_link(make_client, issue_token):
    client = make_client()
    token_id = _redeem(client, issue_token()).json()["tokenId"]

    res = client.post(
        "/api/auth/complete-profile",
        json=_profile_payload(token_id, email="mallory@example.com"),
    )
    assert res.status_code == 400


def test_complete_profile_rejects_taken_phone(onboard, make_client, issue_token):
    onboard()
    client = make_client("8.8.8.8", "UA-bob")
    token_id = _redeem(client, issue_token("bob@example.com")).json()["tokenId"]

    res = client.post(
        "/api/auth/complete-profile",
        json=_profile_payload(token_id, email="bob@example.com", name="Bob"),
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Phone number is already registered"


def test_complete_profile_updates_legacy_user_found_by_phone(make_client, issue_token, storage):
    with storage.transaction():
        legacy = storage.users.create(User(name="Old Name", phone="+919876543210"))

    client = make_client()
    token_id = _redeem(client, issue_token()).json()["tokenId"]
    res = client.post("/api/auth/complete-profile", json=_profile_payload(token_id))

    assert res.status_code == 200
    assert res.json()["user"]["id"] == legacy.id
    updated = storage.users.get_by_id(legacy.id)
    assert updated.email == "alice@example.com"
    assert updated.profile_completed
