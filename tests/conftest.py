import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from visitdesk.core.config import Settings
from visitdesk.core.exceptions import NotificationError
from visitdesk.db.models import OperatorRole
from visitdesk.main import create_app
from visitdesk.services import auth_service

ADMIN_PASSWORD = "admin-pass-123"
RECEPTION_PASSWORD = "desk-pass-123"


class FakeMailer:
    """Records outgoing messages instead of talking to an SMTP server."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.closed = False

    def send(self, msg):
        if self.fail:
            raise NotificationError("smtp down")
        self.sent.append(msg)

    def verify(self):
        return not self.fail

    def close(self):
        self.closed = True


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def make_settings(tmp_path):
    def factory(**overrides):
        values = {
            "DATABASE_URL": f"sqlite:///{tmp_path / 'visitdesk-test.db'}",
            "ENVIRONMENT": "test",
            "ADMIN_USERNAME": "admin",
            "ADMIN_EMAIL": "admin@example.com",
            "ADMIN_DEFAULT_PASSWORD": ADMIN_PASSWORD,
            "RATE_LIMIT_ENABLED": False,
            "DB_CONNECT_MAX_RETRIES": 1,
            "DB_CONNECT_INITIAL_DELAY": 0,
            "SMTP_HOST": "",
            "MAIL_WORKERS": 1,
            "BCRYPT_ROUNDS": 4,
        }
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def make_client(make_settings, mailer):
    clients = []

    def factory(**overrides):
        app = create_app(make_settings(**overrides), mailer=mailer)
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield factory
    for test_client in clients:
        test_client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def db(client):
    session = client.app.state.store.session()
    yield session
    session.close()


def _login(test_client, username, password):
    response = test_client.post("/api/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return _login(client, "admin", ADMIN_PASSWORD)


@pytest.fixture
def reception(db):
    return auth_service.create_operator(
        db,
        username="frontdesk",
        email="frontdesk@example.com",
        password=RECEPTION_PASSWORD,
        role=OperatorRole.reception,
    )


@pytest.fixture
def reception_headers(client, reception):
    return _login(client, "frontdesk", RECEPTION_PASSWORD)


@pytest.fixture
def checkin(client):
    def factory(headers=None, **fields):
        payload = {"visitor_name": "Jane Doe", "host_email": "host@x.com", "purpose": "Meeting"}
        payload.update(fields)
        response = client.post("/api/visitors", json=payload, headers=headers or {})
        assert response.status_code == 200, response.text
        return response.json()

    return factory


@pytest.fixture
def login():
    return _login
