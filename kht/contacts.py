# kht/contacts.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import database, models, schemas, sms
from .deps import get_current_doctor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])


def contact_out(db: Session, contact: models.DoctorPatientContact) -> dict:
    patient = db.query(models.User).filter(models.User.id == contact.patient_id).first()
    profile = (
        db.query(models.PatientProfile)
        .filter(models.PatientProfile.id == contact.patient_id)
        .first()
    )
    return {
        "id": contact.id,
        "doctor_id": contact.doctor_id,
        "patient_id": contact.patient_id,
        "created_at": contact.created_at,
        "patient": {
            "id": patient.id,
            "phone_number": patient.phone_number,
            "patient_profile": profile,
        } if patient else None,
    }


@router.get("", response_model=list[schemas.ContactOut])
def list_contacts(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    rows = (
        db.query(models.DoctorPatientContact)
        .filter(models.DoctorPatientContact.doctor_id == current.id)
        .order_by(models.DoctorPatientContact.created_at.desc())
        .all()
    )
    return [contact_out(db, c) for c in rows]


@router.post("", response_model=schemas.ContactAddResult)
def add_contact(
    payload: schemas.ContactCreate,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    phone = sms.normalize_phone(payload.phone_number)
    if not phone:
        raise HTTPException(status_code=400, detail="phone_number is required")

    patient = (
        db.query(models.User)
        .filter(models.User.phone_number == phone, models.User.role == "patient")
        .first()
    )
    if not patient:
        logger.info("No patient with phone %s, returning invite link", phone)
        return {"status": "invited", "invite_url": sms.invite_url(phone)}

    existing = (
        db.query(models.DoctorPatientContact)
        .filter(
            models.DoctorPatientContact.doctor_id == current.id,
            models.DoctorPatientContact.patient_id == patient.id,
        )
        .first()
    )
    if existing:
        raise HTTPException(status_code=409, detail="This patient is already in your contacts")

    contact = models.DoctorPatientContact(doctor_id=current.id, patient_id=patient.id)
    db.add(contact)
    db.commit()
    db.refresh(contact)
    logger.info("Doctor %s added patient %s", current.id, patient.id)
    return {"status": "added", "contact": contact_out(db, contact)}
