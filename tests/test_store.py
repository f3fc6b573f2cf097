import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from visitdesk.core.exceptions import StorageUnavailable
from visitdesk.db.session import Store
from visitdesk.main import create_app
from visitdesk.services import query_service

UNREACHABLE_URL = "sqlite:////nonexistent-visitdesk-dir/nested/visitdesk.db"


class FlakyEngine:
    """Refuses the first `failures` connections, then behaves like the wrapped engine."""

    def __init__(self, engine, failures):
        self.engine = engine
        self.failures = failures
        self.attempts = 0

    def connect(self):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))
        return self.engine.connect()

    def dispose(self):
        self.engine.dispose()


def test_retry_schedule_until_exhausted():
    store = Store(create_engine(UNREACHABLE_URL))
    delays = []

    with pytest.raises(StorageUnavailable):
        store.connect_with_retry(max_attempts=5, initial_delay=5.0, factor=1.5, max_delay=30.0, sleep=delays.append)

    assert delays == [5.0, 7.5, 11.25, 16.875]
    assert store.available is False


def test_retry_delay_is_capped():
    store = Store(create_engine(UNREACHABLE_URL))
    delays = []

    with pytest.raises(StorageUnavailable):
        store.connect_with_retry(max_attempts=4, initial_delay=20.0, factor=1.5, max_delay=30.0, sleep=delays.append)

    assert delays == [20.0, 30.0, 30.0]


def test_retry_succeeds_after_transient_failures(tmp_path):
    engine = FlakyEngine(create_engine(f"sqlite:///{tmp_path / 'flaky.db'}"), failures=2)
    store = Store(engine)
    delays = []

    store.connect_with_retry(max_attempts=5, initial_delay=1.0, factor=2.0, sleep=delays.append)

    assert engine.attempts == 3
    assert delays == [1.0, 2.0]
    assert store.available is True
    store.dispose()


def test_startup_fails_when_store_never_answers(make_settings, mailer):
    app = create_app(
        make_settings(DATABASE_URL=UNREACHABLE_URL, DB_CONNECT_MAX_RETRIES=2, DB_CONNECT_INITIAL_DELAY=0),
        mailer=mailer,
    )
    with pytest.raises(StorageUnavailable):
        with TestClient(app):
            pass


def test_requests_short_circuit_while_store_is_down(client, admin_headers, monkeypatch):
    store = client.app.state.store
    monkeypatch.setattr(store, "ping", lambda: False)
    store.mark_unavailable()

    def fail(*args, **kwargs):
        raise AssertionError("business logic reached with the store down")

    monkeypatch.setattr(query_service, "list_visitors", fail)

    response = client.get("/api/visitors", headers=admin_headers)
    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"


def test_lost_connection_marks_store_unavailable_then_recovers(client, admin_headers, monkeypatch):
    store = client.app.state.store
    real_list = query_service.list_visitors

    def lost_connection(*args, **kwargs):
        raise OperationalError("SELECT", {}, ConnectionResetError("server closed the connection"))

    monkeypatch.setattr(query_service, "list_visitors", lost_connection)
    response = client.get("/api/visitors", headers=admin_headers)
    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"
    assert store.available is False

    monkeypatch.setattr(query_service, "list_visitors", real_list)
    response = client.get("/api/visitors", headers=admin_headers)
    assert response.status_code == 200
    assert store.available is True


def _drop_connection_on_commit(monkeypatch):
    def commit(self):
        raise OperationalError("COMMIT", {}, ConnectionResetError("server closed the connection"))

    monkeypatch.setattr(Session, "commit", commit)


def test_connection_lost_during_checkin_answers_503(client, monkeypatch):
    store = client.app.state.store
    _drop_connection_on_commit(monkeypatch)

    response = client.post(
        "/api/visitors", json={"visitor_name": "Jane Doe", "host_email": "host@x.com", "purpose": "Meeting"}
    )
    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"
    assert store.available is False


def test_connection_lost_during_checkout_answers_503(client, checkin, admin_headers, monkeypatch):
    store = client.app.state.store
    visitor_id = checkin()["id"]
    _drop_connection_on_commit(monkeypatch)

    response = client.put(f"/api/visitors/{visitor_id}/checkout", headers=admin_headers)
    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"
    assert store.available is False

    monkeypatch.undo()
    response = client.put(f"/api/visitors/{visitor_id}/checkout", headers=admin_headers)
    assert response.status_code == 200


def test_health_reports_components(client, checkin):
    checkin()
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["database"] == {"status": "healthy", "totalVisitors": 1, "totalOperators": 1}
    assert body["services"]["email"] == "not_configured"
    assert body["environment"] == "test"
    assert body["uptime"] >= 0
    assert response.headers["X-Request-ID"]


def test_health_degraded_without_store(client, monkeypatch):
    monkeypatch.setattr(client.app.state.store, "ping", lambda: False)
    body = client.get("/api/health").json()
    assert body["status"] == "DEGRADED"
    assert body["database"]["status"] == "disconnected"


def test_request_id_is_propagated(client):
    response = client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
