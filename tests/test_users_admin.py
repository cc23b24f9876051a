import pytest

from catalog_access.core.security import fingerprint, hash_password
from catalog_access.models.user import User
from catalog_access.services.user_service import seed_primary_admin

ADMIN_PHONE = "9000000001"
ADMIN_PASSWORD = "admin-pass-1"

USERS = "/api/users"


@pytest.fixture
def root_admin(app, storage):
    return storage.users.get_primary_admin()


@pytest.fixture
def second_admin(storage, make_client):
    """A non-primary admin and a client logged in as them."""
    with storage.transaction():
        user = storage.users.create(
            User(
                name="Deputy",
                phone="+919000000002",
                password_hash=hash_password("deputy-pass"),
                is_admin=True,
            )
        )
    c = make_client(ip="5.5.5.6", user_agent="DeputyBrowser")
    res = c.post("/api/auth/admin-login", json={"phone": "9000000002", "password": "deputy-pass"})
    assert res.status_code == 200, res.text
    return user, c


# -------- Admin login --------


def test_primary_admin_is_seeded(root_admin):
    assert root_admin is not None
    assert root_admin.phone == "+919000000001"
    assert root_admin.is_admin and root_admin.is_primary_admin


def test_seeding_twice_keeps_one_primary_admin(app, storage, settings):
    seed_primary_admin(storage, settings)
    admins = [u for u in storage.users.list() if u.is_primary_admin]
    assert len(admins) == 1


def test_admin_login_sets_session_without_token(admin_client):
    me = admin_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["isAdmin"] is True


def test_admin_login_wrong_password(make_client):
    res = make_client().post(
        "/api/auth/admin-login", json={"phone": ADMIN_PHONE, "password": "wrong-password"}
    )
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid phone number or password"
    assert "requiresToken" not in res.json()


def test_admin_login_rejects_regular_users(onboard, make_client):
    onboard()
    res = make_client().post(
        "/api/auth/admin-login", json={"phone": "9876543210", "password": "whatever1"}
    )
    assert res.status_code == 401


def test_admin_login_is_rate_limited(make_client):
    client = make_client(ip="4.3.2.1")
    for _ in range(5):
        client.post("/api/auth/admin-login", json={"phone": ADMIN_PHONE, "password": "bad-pass"})

    res = client.post("/api/auth/admin-login", json={"phone": ADMIN_PHONE, "password": ADMIN_PASSWORD})
    assert res.status_code == 429


# -------- CRUD --------


def test_list_and_get_users(admin_client, root_admin):
    res = admin_client.get(USERS)
    assert res.status_code == 200
    assert [u["id"] for u in res.json()] == [root_admin.id]
    assert "passwordHash" not in res.json()[0]

    assert admin_client.get(f"{USERS}/{root_admin.id}").json()["name"] == "Root Admin"
    assert admin_client.get(f"{USERS}/999").status_code == 404


def test_create_user(admin_client):
    res = admin_client.post(
        USERS, json={"name": "Carol", "phone": "09812345678", "email": "Carol@Example.com"}
    )
    assert res.status_code == 201
    assert res.json()["phone"] == "+919812345678"
    assert res.json()["email"] == "carol@example.com"
    assert res.json()["isAdmin"] is False


def test_create_user_duplicate_phone(admin_client):
    admin_client.post(USERS, json={"name": "Carol", "phone": "9812345678"})
    res = admin_client.post(USERS, json={"name": "Dave", "phone": "+919812345678"})
    assert res.status_code == 400


def test_only_primary_admin_creates_admins(admin_client, second_admin):
    _, deputy = second_admin
    payload = {"name": "Eve", "phone": "9811111111", "password": "eve-pass-1", "isAdmin": True}

    assert deputy.post(USERS, json=payload).status_code == 403
    res = admin_client.post(USERS, json=payload)
    assert res.status_code == 201
    assert res.json()["isAdmin"] is True


def test_update_user(admin_client, onboard):
    _, _, profile = onboard()
    res = admin_client.put(f"{USERS}/{profile['user']['id']}", json={"city": "Mumbai"})
    assert res.status_code == 200
    assert res.json()["city"] == "Mumbai"
    assert res.json()["name"] == "Alice"


def test_non_primary_admin_cannot_touch_primary(second_admin, root_admin):
    _, deputy = second_admin
    assert deputy.put(f"{USERS}/{root_admin.id}", json={"name": "Hacked"}).status_code == 403
    assert deputy.delete(f"{USERS}/{root_admin.id}").status_code == 403


def test_non_primary_admin_cannot_change_roles(second_admin, onboard):
    _, deputy = second_admin
    _, _, profile = onboard()
    res = deputy.put(f"{USERS}/{profile['user']['id']}", json={"isAdmin": True})
    assert res.status_code == 403


def test_primary_admin_cannot_be_demoted(admin_client, root_admin):
    res = admin_client.put(f"{USERS}/{root_admin.id}", json={"isAdmin": False})
    assert res.status_code == 400


def test_primary_role_handover(admin_client, second_admin, root_admin, storage):
    deputy_user, _ = second_admin
    res = admin_client.put(f"{USERS}/{deputy_user.id}", json={"isPrimaryAdmin": True})
    assert res.status_code == 200
    assert res.json()["isPrimaryAdmin"] is True

    primaries = [u for u in storage.users.list() if u.is_primary_admin]
    assert [u.id for u in primaries] == [deputy_user.id]
    assert storage.users.get_by_id(root_admin.id).is_admin


# -------- Delete rules --------


def test_primary_admin_cannot_delete_self(admin_client, root_admin):
    res = admin_client.delete(f"{USERS}/{root_admin.id}")
    assert res.status_code == 403
    assert res.json()["message"] == "The primary admin cannot be deleted"


def test_primary_admin_deletes_other_admin(admin_client, second_admin, storage):
    deputy_user, _ = second_admin
    res = admin_client.delete(f"{USERS}/{deputy_user.id}")
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert storage.users.get_by_id(deputy_user.id) is None


def test_admin_cannot_delete_self(second_admin):
    deputy_user, deputy = second_admin
    assert deputy.delete(f"{USERS}/{deputy_user.id}").status_code == 400


def test_delete_removes_bindings(admin_client, onboard, make_client, storage):
    _, token, profile = onboard()
    user_id = profile["user"]["id"]

    assert admin_client.delete(f"{USERS}/{user_id}").status_code == 200

    assert storage.tokens.get_by_token(token) is None
    fp = fingerprint("UA1", "1.1.1.1")
    assert storage.devices.get_by_fingerprint(fp, "1.1.1.1", active_only=False) is None
    # The device can no longer resume
    assert make_client("1.1.1.1", "UA1").get("/api/auth/me").status_code == 401


def test_users_api_is_admin_only(onboard, make_client):
    user_client, _, _ = onboard()
    assert user_client.get(USERS).status_code == 403
    assert make_client("3.3.3.3", "Stranger").get(USERS).status_code == 401


# -------- Admin token views --------


def test_list_tokens_hides_raw_token(admin_client, onboard):
    _, token, _ = onboard()
    res = admin_client.get("/api/auth/tokens")
    assert res.status_code == 200

    rows = res.json()["tokens"]
    assert len(rows) == 1
    assert rows[0]["email"] == "alice@example.com"
    assert rows[0]["userName"] == "Alice"
    assert rows[0]["ipAddress"] == "1.1.1.1"
    assert token not in res.text


def test_resend_token(admin_client, issue_token, storage, mailer):
    token = issue_token("bob@example.com")
    token_id = storage.tokens.get_by_token(token).id

    res = admin_client.post(f"/api/auth/tokens/{token_id}/resend")
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert res.json()["tokenUrl"] == f"http://catalog.test/access?token={token}"
    assert mailer.sent[-1]["to"] == "bob@example.com"
    assert mailer.last_token() == token


def test_resend_unknown_token(admin_client):
    assert admin_client.post("/api/auth/tokens/999/resend").status_code == 404
