import logging
from datetime import datetime, timedelta, timezone

from loransems.core.auth.session_control import hash_session_token
from loransems.web.cli import _create_cli_app

from conftest import PASSWORD


def test_init_db(app, backend):
    result = app.test_cli_runner().invoke(args=["init-db"])
    assert result.exit_code == 0
    assert "Database initialized" in result.output


def test_create_user_then_login(app, backend, authenticator):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "create-user", "lina",
        "--password", "Str0ng-Passw0rd",
        "--role", "admin",
        "--first-name", "Lina",
        "--last-name", "Haddad",
        "--employee-code", "EMP900",
        "--email", "lina@lorans.test",
        "--location-id", "1",
        "--department-id", "4",
    ])

    assert result.exit_code == 0, result.output
    user = backend.credentials.find_active_user("lina")
    assert user.role == "admin"
    assert user.password_hash.startswith("$argon2id$")
    assert authenticator.login("lina", "Str0ng-Passw0rd").success


def test_create_user_rejects_short_password(app):
    result = app.test_cli_runner().invoke(args=[
        "create-user", "lina", "--password", "short", "--employee-id", "1",
    ])
    assert result.exit_code != 0


def test_create_user_requires_employee_details(app):
    result = app.test_cli_runner().invoke(args=[
        "create-user", "lina", "--password", "Str0ng-Passw0rd",
    ])
    assert result.exit_code != 0


def test_create_duplicate_user_fails(app, make_user):
    user = make_user("rana")
    result = app.test_cli_runner().invoke(args=[
        "create-user", "rana", "--password", "Str0ng-Passw0rd",
        "--employee-id", str(user.employee_id),
    ])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_unlock_user(app, make_user, authenticator, backend):
    make_user("rana")
    for _ in range(5):
        authenticator.login("rana", "wrong-password")
    assert authenticator.login("rana", PASSWORD).locked

    result = app.test_cli_runner().invoke(args=["unlock-user", "rana"])

    assert result.exit_code == 0
    assert authenticator.login("rana", PASSWORD).success


def test_unlock_unknown_user(app):
    result = app.test_cli_runner().invoke(args=["unlock-user", "nobody"])
    assert result.exit_code != 0
    assert "No such user" in result.output


def test_purge_sessions(app, make_user, authority, backend):
    now = datetime.now(timezone.utc)
    stale = authority.create(make_user("stale"), now=now - timedelta(hours=2))
    fresh = authority.create(make_user("fresh"), now=now)
    backend.sessions.save_session(hash_session_token("stale"), stale)
    backend.sessions.save_session(hash_session_token("fresh"), fresh)

    result = app.test_cli_runner().invoke(args=["purge-sessions"])

    assert result.exit_code == 0
    assert "Removed 1 expired session(s)." in result.output
    assert backend.sessions.load_session(hash_session_token("fresh")) is not None


def test_cli_app_creates_data_and_log_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("LORANSEMS_PATHS__DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LORANSEMS_PATHS__LOG_DIR", str(tmp_path / "logs"))
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        app = _create_cli_app()
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert (tmp_path / "data").is_dir()
    assert (tmp_path / "logs").is_dir()
    assert app.extensions["loransems"].config.database_url == str(tmp_path / "data" / "lorans_medical.db")
