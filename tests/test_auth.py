from datetime import datetime, timedelta

from kht import config, models, sms
from tests.conftest import last_code, sign_in


def test_otp_sign_in_creates_identity_and_reports_new_user(client, sent_sms):
    body = sign_in(client, sent_sms, "+1 555 010 0001")

    assert body["token_type"] == "bearer"
    assert body["is_new_user"] is True
    assert body["role"] is None
    # whitespace is stripped before delivery
    assert sent_sms[-1][0] == "+15550100001"


def test_invalid_phone_is_rejected(client, sent_sms):
    resp = client.post("/auth/otp", json={"phone": "555-0100"})
    assert resp.status_code == 400
    assert sent_sms == []


def test_wrong_code_is_rejected_and_counts_attempts(client, sent_sms, db):
    phone = "+15550100002"
    client.post("/auth/otp", json={"phone": phone})
    good = last_code(sent_sms, phone)
    bad = "000000" if good != "000000" else "111111"

    resp = client.post("/auth/verify", json={"phone": phone, "token": bad})
    assert resp.status_code == 401

    identity = db.query(models.AuthIdentity).filter_by(phone=phone).one()
    assert identity.otp_attempts == 1

    # the right code still works afterwards
    resp = client.post("/auth/verify", json={"phone": phone, "token": good})
    assert resp.status_code == 200


def test_code_is_single_use(client, sent_sms):
    phone = "+15550100003"
    client.post("/auth/otp", json={"phone": phone})
    code = last_code(sent_sms, phone)
    assert client.post("/auth/verify", json={"phone": phone, "token": code}).status_code == 200
    assert client.post("/auth/verify", json={"phone": phone, "token": code}).status_code == 401


def test_expired_code_is_rejected(client, sent_sms, db):
    phone = "+15550100004"
    client.post("/auth/otp", json={"phone": phone})
    code = last_code(sent_sms, phone)

    identity = db.query(models.AuthIdentity).filter_by(phone=phone).one()
    identity.otp_expires_at = datetime.utcnow() - timedelta(seconds=1)
    db.commit()

    resp = client.post("/auth/verify", json={"phone": phone, "token": code})
    assert resp.status_code == 401


def test_too_many_attempts_burns_the_code(client, sent_sms, db):
    phone = "+15550100005"
    client.post("/auth/otp", json={"phone": phone})
    code = last_code(sent_sms, phone)

    identity = db.query(models.AuthIdentity).filter_by(phone=phone).one()
    identity.otp_attempts = config.OTP_MAX_ATTEMPTS
    db.commit()

    resp = client.post("/auth/verify", json={"phone": phone, "token": code})
    assert resp.status_code == 401


def test_resend_too_soon_is_throttled(client, sent_sms):
    phone = "+15550100006"
    assert client.post("/auth/otp", json={"phone": phone}).status_code == 200
    assert client.post("/auth/otp", json={"phone": phone}).status_code == 429
    assert len(sent_sms) == 1


def test_failed_delivery_allows_immediate_retry(client, sent_sms, db, monkeypatch):
    phone = "+15551112222"
    outbox_send = sms.send_sms
    monkeypatch.setattr(sms, "send_sms", lambda to_phone_number, message: False)
    resp = client.post("/auth/otp", json={"phone": phone})
    assert resp.status_code == 502
    assert db.query(models.AuthIdentity).filter_by(phone=phone).count() == 0

    monkeypatch.setattr(sms, "send_sms", outbox_send)
    assert client.post("/auth/otp", json={"phone": phone}).status_code == 200
    code = last_code(sent_sms, phone)
    assert client.post("/auth/verify", json={"phone": phone, "token": code}).status_code == 200


def test_failed_resend_keeps_the_earlier_code(client, sent_sms, db, monkeypatch):
    phone = "+15551112223"
    client.post("/auth/otp", json={"phone": phone})
    first = last_code(sent_sms, phone)
    identity = db.query(models.AuthIdentity).filter_by(phone=phone).one()
    identity.otp_sent_at = datetime.utcnow() - timedelta(seconds=config.OTP_RESEND_SECONDS + 1)
    db.commit()

    monkeypatch.setattr(sms, "send_sms", lambda to_phone_number, message: False)
    assert client.post("/auth/otp", json={"phone": phone}).status_code == 502
    assert client.post("/auth/verify", json={"phone": phone, "token": first}).status_code == 200


def test_register_then_me_reports_role(client, sent_sms):
    body = sign_in(client, sent_sms, "+15550100007")
    headers = {"Authorization": f"Bearer {body['access_token']}"}

    me = client.get("/auth/me", headers=headers).json()
    assert me["is_new_user"] is True
    assert me["user"] is None

    resp = client.post("/users", json={"role": "doctor"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["phone_number"] == "+15550100007"

    me = client.get("/auth/me", headers=headers).json()
    assert me["is_new_user"] is False
    assert me["role"] == "doctor"

    again = client.post("/users", json={"role": "patient"}, headers=headers)
    assert again.status_code == 409


def test_unknown_role_is_rejected(client, sent_sms):
    body = sign_in(client, sent_sms, "+15550100008")
    headers = {"Authorization": f"Bearer {body['access_token']}"}
    assert client.post("/users", json={"role": "nurse"}, headers=headers).status_code == 422


def test_sign_out_revokes_token(client, sent_sms):
    body = sign_in(client, sent_sms, "+15550100009")
    headers = {"Authorization": f"Bearer {body['access_token']}"}

    assert client.post("/auth/signout", headers=headers).status_code == 200
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_missing_or_garbage_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_role_gates(doctor, patient, client):
    _, doctor_headers, _ = doctor
    _, patient_headers, _ = patient
    assert client.get("/patients/me/profile/status", headers=doctor_headers).status_code == 403
    assert client.get("/doctors/me/profile/status", headers=patient_headers).status_code == 403
