from sqlalchemy import DateTime

from kht import models

DOCTOR_PROFILE = {
    "full_name": "Dr. Amina Shah",
    "specialization": "Cardiology",
    "qualification": "MBBS, FCPS",
    "years_of_experience": 12,
}

AVAILABILITY = {
    "status": "available",
    "start_time": "2026-10-16T09:00:00",
    "end_time": "2026-10-16T17:00:00",
    "auto_response": "Back after clinic hours.",
}


def test_doctor_status_creates_skeleton_profile(client, doctor, db):
    doctor_id, headers, _ = doctor

    resp = client.get("/doctors/me/profile/status", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["needs_onboarding"] is True
    assert body["profile"]["is_profile_complete"] is False

    assert db.query(models.DoctorProfile).filter_by(id=doctor_id).count() == 1


def test_doctor_profile_missing_is_404(client, doctor):
    _, headers, _ = doctor
    assert client.get("/doctors/me/profile", headers=headers).status_code == 404


def test_doctor_onboarding_two_steps(client, doctor):
    _, headers, _ = doctor

    step1 = client.post("/doctors/onboarding/profile", json=DOCTOR_PROFILE, headers=headers)
    assert step1.status_code == 200
    assert step1.json()["is_profile_complete"] is False
    assert client.get("/doctors/me/profile/status", headers=headers).json()["needs_onboarding"] is True

    step2 = client.post("/doctors/onboarding/availability", json=AVAILABILITY, headers=headers)
    assert step2.status_code == 200
    assert step2.json()["needs_onboarding"] is False

    status = client.get("/doctors/me/profile/status", headers=headers).json()
    assert status["needs_onboarding"] is False
    assert status["profile"]["full_name"] == "Dr. Amina Shah"

    availability = client.get("/doctors/me/availability", headers=headers).json()
    assert availability["auto_response"] == "Back after clinic hours."


def test_availability_step_requires_profile_step(client, doctor):
    _, headers, _ = doctor
    resp = client.post("/doctors/onboarding/availability", json=AVAILABILITY, headers=headers)
    assert resp.status_code == 400


def test_onboarding_profile_step_keeps_completed_flag(client, doctor):
    _, headers, _ = doctor
    client.post("/doctors/onboarding/profile", json=DOCTOR_PROFILE, headers=headers)
    client.post("/doctors/onboarding/availability", json=AVAILABILITY, headers=headers)

    again = client.post(
        "/doctors/onboarding/profile",
        json={**DOCTOR_PROFILE, "specialization": "Neurology"},
        headers=headers,
    )
    assert again.json()["is_profile_complete"] is True
    assert again.json()["specialization"] == "Neurology"


def test_settings_profile_update_marks_complete(client, doctor):
    _, headers, _ = doctor
    resp = client.put(
        "/doctors/me/profile",
        json={**DOCTOR_PROFILE, "hospital_affiliation": "City Hospital"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["is_profile_complete"] is True
    assert client.get("/doctors/me/profile", headers=headers).json()["hospital_affiliation"] == "City Hospital"


def test_availability_upsert_and_defaults(client, doctor):
    _, headers, _ = doctor
    assert client.get("/doctors/me/availability", headers=headers).json() is None

    first = client.put("/doctors/me/availability", json=AVAILABILITY, headers=headers).json()
    second = client.put(
        "/doctors/me/availability",
        json={**AVAILABILITY, "status": "unavailable"},
        headers=headers,
    ).json()
    assert first["id"] == second["id"]
    assert second["status"] == "unavailable"

    defaults = client.get("/doctors/availability/defaults", headers=headers).json()
    assert defaults["status"] == "available"
    assert defaults["start_time"].endswith("09:00:00")
    assert defaults["end_time"].endswith("17:00:00")
    assert defaults["auto_response"].startswith("I am currently unavailable")


def test_availability_rejects_inverted_window(client, doctor):
    _, headers, _ = doctor
    resp = client.put(
        "/doctors/me/availability",
        json={**AVAILABILITY, "start_time": "2026-10-16T18:00:00"},
        headers=headers,
    )
    assert resp.status_code == 400


def test_patient_status_without_profile(client, patient, db):
    patient_id, headers, _ = patient
    body = client.get("/patients/me/profile/status", headers=headers).json()
    assert body == {"needs_onboarding": True, "profile": None}
    # no skeleton row for patients
    assert db.query(models.PatientProfile).filter_by(id=patient_id).count() == 0


def test_patient_onboarding_splits_allergies_and_completes(client, patient):
    _, headers, _ = patient
    resp = client.post(
        "/patients/onboarding",
        json={
            "full_name": "  Omar Farooq ",
            "date_of_birth": "1990-04-02",
            "blood_group": "O+",
            "allergies": "penicillin, , dust ",
        },
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["full_name"] == "Omar Farooq"
    assert body["allergies"] == ["penicillin", "dust"]
    assert body["profile_completed"] is True
    assert body["gender"] is None

    status = client.get("/patients/me/profile/status", headers=headers).json()
    assert status["needs_onboarding"] is False


def test_patient_onboarding_requires_name(client, patient):
    _, headers, _ = patient
    resp = client.post("/patients/onboarding", json={"full_name": "   "}, headers=headers)
    assert resp.status_code == 400


def test_patient_partial_update_then_mark_complete(client, patient):
    _, headers, _ = patient
    assert client.post("/patients/me/profile/complete", headers=headers).status_code == 404

    resp = client.patch(
        "/patients/me/profile",
        json={"full_name": "Sara", "medical_conditions": ["asthma"]},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["profile_completed"] is False

    resp = client.patch("/patients/me/profile", json={"gender": "female"}, headers=headers)
    assert resp.json()["full_name"] == "Sara"
    assert resp.json()["medical_conditions"] == ["asthma"]

    done = client.post("/patients/me/profile/complete", headers=headers)
    assert done.json()["profile_completed"] is True
    assert client.get("/patients/me/profile", headers=headers).json()["gender"] == "female"


def test_availability_offsets_are_stored_as_utc(client, doctor):
    _, headers, _ = doctor
    resp = client.put(
        "/doctors/me/availability",
        json={**AVAILABILITY, "start_time": "2026-10-16T09:00:00+05:00", "end_time": "2026-10-16T12:30:00Z"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["start_time"] == "2026-10-16T04:00:00"
    assert resp.json()["end_time"] == "2026-10-16T12:30:00"


def test_timestamps_are_naive_utc_columns():
    for table in models.Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, DateTime):
                assert column.type.timezone is False, f"{table.name}.{column.name}"
