from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from loransems.core.auth.session_control import hash_session_token
from loransems.db import PersistenceError
from loransems.security.constants import (
    MSG_ACCOUNT_LOCKED,
    MSG_CREDENTIALS_REQUIRED,
    MSG_INVALID_CREDENTIALS,
    MSG_LOGIN_SUCCESS,
)

from conftest import PASSWORD


def _login(client, username, password=PASSWORD):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def _token_hash(client):
    with client.session_transaction() as cookie:
        return hash_session_token(cookie["auth_token"])


def test_health(client):
    data = client.get("/api/health").get_json()
    assert data["status"] == "healthy"
    assert data["database"] == "SQLite"


def test_login_success_sets_session(client, make_user):
    make_user("rana", role="department_head")

    response = _login(client, "rana")

    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == MSG_LOGIN_SUCCESS
    assert body["user"]["username"] == "rana"
    assert body["user"]["role"] == "department_head"

    session = client.get("/api/auth/session").get_json()["session"]
    assert session["location_code"] == "SYR-CC"


def test_login_accepts_form_data(client, make_user):
    make_user("rana")
    response = client.post("/api/auth/login", data={"username": "rana", "password": PASSWORD})
    assert response.status_code == 200


def test_cookie_holds_only_a_token(client, make_user, backend):
    make_user("rana")
    _login(client, "rana")

    with client.session_transaction() as cookie:
        assert set(cookie.keys()) == {"auth_token"}
    assert backend.sessions.load_session(_token_hash(client)).username == "rana"


def test_missing_credentials_is_400(client):
    response = client.post("/api/auth/login", json={"username": "rana"})
    assert response.status_code == 400
    assert response.get_json()["error"] == MSG_CREDENTIALS_REQUIRED


def test_wrong_password_and_unknown_user_look_the_same(client, make_user):
    make_user("rana")

    wrong = _login(client, "rana", "wrong-password")
    unknown = _login(client, "nobody")

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.get_json() == unknown.get_json() == {"error": MSG_INVALID_CREDENTIALS}


def test_locked_account_is_423(client, make_user):
    make_user("rana")
    for _ in range(5):
        _login(client, "rana", "wrong-password")

    response = _login(client, "rana")

    assert response.status_code == 423
    assert response.get_json()["error"] == MSG_ACCOUNT_LOCKED


def test_session_endpoint_requires_login(client):
    response = client.get("/api/auth/session")
    assert response.status_code == 401
    assert response.get_json()["error"] == "Authentication required"


def test_logout_ends_session_and_audits_once(client, make_user, backend):
    user = make_user("rana")
    _login(client, "rana")
    token_hash = _token_hash(client)

    assert client.post("/api/auth/logout").status_code == 200

    assert client.get("/api/auth/session").status_code == 401
    assert backend.sessions.load_session(token_hash) is None
    actions = [e.action for e in backend.audit_sink.list_events(user_id=user.user_id)]
    assert actions == ["login", "logout"]

    # A second logout has no principal and writes nothing
    client.post("/api/auth/logout")
    assert len(backend.audit_sink.list_events(user_id=user.user_id)) == 2


def test_idle_session_expires(client, make_user, backend):
    make_user("rana")
    _login(client, "rana")
    token_hash = _token_hash(client)
    backend.sessions.touch_session(token_hash, datetime.now(timezone.utc) - timedelta(seconds=3601))

    response = client.get("/api/auth/session")

    assert response.status_code == 401
    assert response.get_json()["error"] == "Session expired"
    assert backend.sessions.load_session(token_hash) is None


def test_activity_slides_the_stored_window(client, make_user, backend):
    make_user("rana")
    _login(client, "rana")
    token_hash = _token_hash(client)
    backend.sessions.touch_session(token_hash, datetime.now(timezone.utc) - timedelta(seconds=3000))

    assert client.get("/api/auth/session").status_code == 200

    idle = datetime.now(timezone.utc) - backend.sessions.load_session(token_hash).last_activity
    assert idle < timedelta(seconds=60)


def test_role_check_endpoint(client, make_user):
    make_user("rana", role="hr_manager")
    _login(client, "rana")

    assert client.get("/api/auth/role/department_head").get_json() == {
        "role": "department_head", "granted": True,
    }
    assert client.get("/api/auth/role/admin").get_json()["granted"] is False
    assert client.get("/api/auth/role/unknown_role").get_json()["granted"] is False


def test_location_isolation(client, make_user):
    make_user("rana", location_id=1)
    _login(client, "rana")

    assert client.get("/api/locations/1/access").status_code == 200
    response = client.get("/api/locations/2/access")
    assert response.status_code == 403
    assert response.get_json()["granted"] is False


def test_admin_reaches_every_location(client, make_user):
    make_user("omar", role="admin", location_id=1, department_id=4)
    _login(client, "omar")
    assert client.get("/api/locations/2/access").status_code == 200


def test_index_redirects_to_login_when_anonymous(client):
    response = client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/login")


def test_admin_page_redirects_insufficient_roles(client, make_user):
    make_user("rana", role="hr_manager")
    _login(client, "rana")

    response = client.get("/admin")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/unauthorized")


def test_admin_page_for_admin(client, make_user):
    make_user("omar", role="super_admin", location_id=1, department_id=4)
    _login(client, "omar")
    assert client.get("/admin").status_code == 200


def test_relogin_replaces_previous_session(client, make_user, backend):
    make_user("rana")
    _login(client, "rana")
    first = _token_hash(client)

    _login(client, "rana")

    assert backend.sessions.load_session(first) is None
    assert _token_hash(client) != first


def test_store_outage_is_503(client, backend):
    with patch.object(type(backend.credentials), "get_lock_state",
                      side_effect=PersistenceError("database is locked")):
        response = _login(client, "rana")
    assert response.status_code == 503
    assert "error" in response.get_json()


def test_session_store_outage_is_503(client, make_user, backend):
    make_user("rana")
    _login(client, "rana")

    with patch.object(type(backend.sessions), "load_session",
                      side_effect=PersistenceError("disk I/O error")):
        response = client.get("/api/auth/session")

    assert response.status_code == 503


def test_unencodable_password_is_400(client, make_user):
    make_user("rana")
    response = client.post(
        "/api/auth/login",
        data='{"username": "rana", "password": "\\ud800"}',
        content_type="application/json",
    )
    assert response.status_code == 400
    assert "invalid characters" in response.get_json()["error"]
