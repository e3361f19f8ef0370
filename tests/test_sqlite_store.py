from datetime import datetime, timedelta, timezone

import pytest

from loransems.core.auth.session_control import Session, SessionState, hash_session_token
from loransems.db import PersistenceError, SQLiteDatabase, UserExistsError, open_backend
from loransems.security.audit import AuditEvent

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_initialize_is_idempotent_and_seeds_locations(backend):
    backend.database.initialize()
    with backend.database.transaction() as conn:
        codes = [r["location_code"] for r in conn.execute("SELECT location_code FROM locations ORDER BY location_id")]
        departments = conn.execute("SELECT COUNT(*) FROM departments").fetchone()[0]
    assert codes == ["SYR-CC", "TUR-CL"]
    assert departments == 5


def test_find_active_user_resolves_context(backend, make_user):
    make_user("rana", role="department_head", location_id=1, department_id=2)

    user = backend.credentials.find_active_user("rana")

    assert user.role == "department_head"
    assert user.location_name == "Syria Call Center"
    assert user.department_name == "Call Center Operations"
    assert user.full_name.startswith("Test User")
    assert "password_hash" not in repr(user)


def test_lock_state_ignores_status(backend, make_user):
    make_user("suspended", status="suspended")
    assert backend.credentials.find_active_user("suspended") is None
    assert backend.credentials.get_lock_state("suspended").login_attempts == 0


def test_failed_attempts_lock_in_one_update(backend, make_user):
    user = make_user("rana")
    store = backend.credentials

    states = [store.record_failed_attempt(user.user_id, 3) for _ in range(4)]

    assert [s.login_attempts for s in states] == [1, 2, 3, 4]
    assert [s.account_locked for s in states] == [False, False, True, True]


def test_failed_attempt_for_missing_user_raises(backend):
    with pytest.raises(PersistenceError):
        backend.credentials.record_failed_attempt(999, 5)


def test_successful_login_resets_counter(backend, make_user):
    user = make_user("rana")
    for _ in range(4):
        backend.credentials.record_failed_attempt(user.user_id, 5)

    assert backend.credentials.record_successful_login(user.user_id, NOW, 5)

    refreshed = backend.credentials.get_user(user.user_id)
    assert refreshed.lock_state.login_attempts == 0
    assert not refreshed.account_locked
    assert refreshed.last_login == NOW


def test_successful_login_leaves_locked_row_untouched(backend, make_user):
    user = make_user("rana")
    for _ in range(5):
        backend.credentials.record_failed_attempt(user.user_id, 5)

    assert not backend.credentials.record_successful_login(user.user_id, NOW, 5)

    refreshed = backend.credentials.get_user(user.user_id)
    assert refreshed.lock_state.login_attempts == 5
    assert refreshed.account_locked
    assert refreshed.last_login is None


def test_unlock_user(backend, make_user):
    user = make_user("rana")
    for _ in range(5):
        backend.credentials.record_failed_attempt(user.user_id, 5)

    assert backend.credentials.unlock_user("rana")
    assert not backend.credentials.unlock_user("nobody")
    assert not backend.credentials.get_lock_state("rana").is_locked(5)


def test_duplicate_username_raises(backend, make_user):
    user = make_user("rana")
    with pytest.raises(UserExistsError):
        backend.credentials.create_user(user.employee_id, "rana", "$argon2id$x")


def test_audit_sink_appends_and_reads_back(backend, make_user):
    user = make_user("rana")
    sink = backend.audit_sink
    sink.append(AuditEvent(user.user_id, "login", "authentication", "User logged in successfully",
                           "10.0.0.1", "pytest", NOW))
    sink.append(AuditEvent(user.user_id, "logout", "authentication", "User logged out"))

    events = sink.list_events(user_id=user.user_id)
    assert [e.action for e in events] == ["login", "logout"]
    assert events[0].ip_address == "10.0.0.1"
    assert events[0].created_at == NOW
    assert [e.action for e in sink.list_events(action="logout")] == ["logout"]


def test_session_store_round_trip(backend, make_user, authority):
    user = make_user("rana", location_id=2, department_id=3)
    session = authority.create(user, now=NOW)
    token_hash = hash_session_token("token-1")

    backend.sessions.save_session(token_hash, session, "10.0.0.1", "pytest")
    loaded = backend.sessions.load_session(token_hash)

    assert loaded == session
    assert loaded.state is SessionState.AUTHENTICATED
    assert backend.sessions.load_session(hash_session_token("other")) is None


def test_session_touch_and_delete(backend, make_user, authority):
    session = authority.create(make_user("rana"), now=NOW)
    token_hash = hash_session_token("token-1")
    backend.sessions.save_session(token_hash, session)

    later = NOW + timedelta(minutes=30)
    backend.sessions.touch_session(token_hash, later)
    assert backend.sessions.load_session(token_hash).last_activity == later

    backend.sessions.delete_session(token_hash)
    assert backend.sessions.load_session(token_hash) is None


def test_purge_expired_sessions(backend, make_user, authority):
    stale = authority.create(make_user("stale"), now=NOW - timedelta(hours=3))
    fresh = authority.create(make_user("fresh"), now=NOW)
    backend.sessions.save_session(hash_session_token("stale"), stale)
    backend.sessions.save_session(hash_session_token("fresh"), fresh)

    removed = backend.sessions.purge_expired(NOW - timedelta(hours=1))

    assert removed == 1
    assert backend.sessions.load_session(hash_session_token("stale")) is None
    assert isinstance(backend.sessions.load_session(hash_session_token("fresh")), Session)


def test_unopenable_database_raises_persistence_error(tmp_path):
    database = SQLiteDatabase(tmp_path / "missing-dir" / "ems.db")
    with pytest.raises(PersistenceError):
        with database.transaction() as conn:
            conn.execute("SELECT 1")


def test_open_backend_accepts_sqlite_url(tmp_path):
    backend = open_backend(f"sqlite:///{tmp_path / 'ems.db'}")
    assert isinstance(backend.database, SQLiteDatabase)
    assert backend.database.path == tmp_path / "ems.db"
