from datetime import datetime, timedelta, timezone

import pytest

from app.services.background_jobs import BackgroundJobService
from app.services.session_store import AuthContext, Session, SessionStore, new_session_id
from app.utils.audit import RecordingAuditSink


def make_session(user_id="user-1", ttl=timedelta(hours=1), session_id=None):
    return Session(
        session_id=session_id or new_session_id(),
        user_id=user_id,
        email=f"{user_id}@example.com",
        auth=AuthContext(
            access_token="access-token-value",
            refresh_token="refresh-token-value",
            expires_at=datetime.now(timezone.utc) + ttl,
        ),
    )


def test_save_and_get():
    store = SessionStore()
    session = store.save(make_session())

    assert store.get(session.session_id) == session
    assert store.get("missing") is None
    assert store.get(None) is None


def test_expired_session_is_dropped_on_read():
    store = SessionStore()
    session = store.save(make_session(ttl=timedelta(seconds=-1)))

    assert store.get(session.session_id) is None
    assert len(store) == 0


def test_update_replaces_fields():
    store = SessionStore()
    session = store.save(make_session())

    updated = store.update(session.session_id, email="renamed@example.com")

    assert updated.email == "renamed@example.com"
    assert store.get(session.session_id).email == "renamed@example.com"
    assert store.update("missing", email="x@example.com") is None


def test_sessions_are_immutable():
    session = make_session()

    with pytest.raises(Exception):
        session.email = "changed@example.com"


def test_repr_does_not_leak_tokens():
    session = make_session(session_id="abcdefghijklmnopqrstuvwxyz")

    text = repr(session) + str(session.auth)

    assert "access-token-value" not in text
    assert "refresh-token-value" not in text
    assert "abcdefghijklmnop" not in text


def test_delete_and_delete_for_user():
    store = SessionStore()
    a1 = store.save(make_session("alice"))
    store.save(make_session("alice"))
    b = store.save(make_session("bob"))

    assert store.delete(a1.session_id) is True
    assert store.delete(a1.session_id) is False
    assert store.delete_for_user("alice") == 1
    assert len(store) == 1
    assert store.get(b.session_id) is not None


def test_max_size_evicts_least_recently_used():
    store = SessionStore(max_size=2)
    first = store.save(make_session("a"))
    second = store.save(make_session("b"))
    store.get(first.session_id)
    store.save(make_session("c"))

    assert store.get(second.session_id) is None
    assert store.get(first.session_id) is not None
    assert store.get_stats() == {"size": 2, "max_size": 2}


def test_purge_expired():
    store = SessionStore()
    live = store.save(make_session("alive"))
    store.save(make_session("stale", ttl=timedelta(seconds=-1)))

    assert store.purge_expired() == 1
    assert len(store) == 1
    assert store.get(live.session_id) is not None


def test_sweep_job_purges_and_records_stats():
    store = SessionStore()
    store.save(make_session("stale", ttl=timedelta(seconds=-1)))
    store.save(make_session("alive"))
    audit = RecordingAuditSink()
    jobs = BackgroundJobService(store, audit)

    assert jobs.sweep_expired_sessions() == 1

    assert len(store) == 1
    assert jobs.job_stats["sweep_sessions"]["status"] == "success"
    assert jobs.job_stats["sweep_sessions"]["purged"] == 1
    assert audit.events[-1] == ("session.sweep", {"purged": 1, "remaining": 1})


def test_jobs_not_started_when_disabled(monkeypatch):
    monkeypatch.setenv("ENABLE_BACKGROUND_JOBS", "false")
    jobs = BackgroundJobService(SessionStore(), RecordingAuditSink())

    jobs.start()

    assert jobs.scheduler.running is False
    assert jobs.get_job_stats()["jobs"] == []
    jobs.shutdown()


def test_health_reports_session_store(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["sessions"]["size"] == 0
