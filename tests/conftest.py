import os
import re

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SERVICE_ROLE_KEY"] = "test-service-key"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kht import database, sms
from main import app

SERVICE_HEADERS = {"Authorization": "Bearer test-service-key"}


@pytest.fixture
def engine():
    # single shared in-memory connection across the threadpool
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.create_db_and_tables(engine)
    yield engine
    database.Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sent_sms(monkeypatch):
    outbox = []

    def fake_send(to_phone_number, message):
        outbox.append((to_phone_number, message))
        return True

    monkeypatch.setattr(sms, "send_sms", fake_send)
    return outbox


@pytest.fixture
def client(session_factory, sent_sms):
    return TestClient(app)


def last_code(outbox, phone):
    for to, message in reversed(outbox):
        if to == phone:
            return re.search(r"(\d{6})", message).group(1)
    raise AssertionError(f"no SMS sent to {phone}")


def sign_in(client, outbox, phone):
    """OTP round trip; returns the verify response body."""
    assert client.post("/auth/otp", json={"phone": phone}).status_code == 200
    resp = client.post("/auth/verify", json={"phone": phone, "token": last_code(outbox, phone)})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def make_user(client, sent_sms):
    """Signs in a phone and registers it with a role. Returns (user_id, headers, token)."""
    def _make(phone, role):
        body = sign_in(client, sent_sms, phone)
        headers = {"Authorization": f"Bearer {body['access_token']}"}
        resp = client.post("/users", json={"role": role}, headers=headers)
        assert resp.status_code == 201, resp.text
        return body["user_id"], headers, body["access_token"]
    return _make


@pytest.fixture
def doctor(make_user):
    return make_user("+15550000001", "doctor")


@pytest.fixture
def patient(make_user):
    return make_user("+15550000002", "patient")
