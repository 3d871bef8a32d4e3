# kht/patients.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import database, models, schemas
from .deps import get_current_patient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["patients"])


def _profile(db: Session, patient_id: str) -> Optional[models.PatientProfile]:
    return db.query(models.PatientProfile).filter(models.PatientProfile.id == patient_id).first()


def split_allergies(raw: Optional[str]) -> list[str]:
    """'peanuts, , dust' -> ['peanuts', 'dust']"""
    if not raw:
        return []
    return [a.strip() for a in raw.split(",") if a.strip()]


def update_profile_fields(db: Session, patient_id: str, fields: dict) -> models.PatientProfile:
    profile = _profile(db, patient_id)
    if not profile:
        profile = models.PatientProfile(id=patient_id, profile_completed=False)
        db.add(profile)
    for key, value in fields.items():
        setattr(profile, key, value)
    db.commit()
    db.refresh(profile)
    return profile


# ---- Completion check (no skeleton row for patients)
@router.get("/me/profile/status", response_model=schemas.PatientProfileStatus)
def profile_status(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    profile = _profile(db, current.id)
    if not profile:
        return {"needs_onboarding": True, "profile": None}
    return {"needs_onboarding": not profile.profile_completed, "profile": profile}


@router.get("/me/profile", response_model=schemas.PatientProfileOut)
def get_profile(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    profile = _profile(db, current.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


# ---- Partial update; completion flag untouched
@router.patch("/me/profile", response_model=schemas.PatientProfileOut)
def update_profile(
    payload: schemas.PatientProfileUpdate,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    return update_profile_fields(db, current.id, payload.model_dump(exclude_unset=True))


@router.post("/me/profile/complete", response_model=schemas.PatientProfileOut)
def mark_profile_complete(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    profile = _profile(db, current.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    profile.profile_completed = True
    db.commit()
    db.refresh(profile)
    return profile


@router.post("/onboarding", response_model=schemas.PatientProfileOut)
def onboarding(
    payload: schemas.PatientOnboarding,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_patient),
):
    name = payload.full_name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Please enter your full name")

    fields = {"full_name": name}
    for key in ("date_of_birth", "gender", "blood_group"):
        value = getattr(payload, key)
        if value:
            fields[key] = value
    allergies = split_allergies(payload.allergies)
    if allergies:
        fields["allergies"] = allergies

    profile = update_profile_fields(db, current.id, fields)
    profile.profile_completed = True
    db.commit()
    db.refresh(profile)
    logger.info("Patient %s finished onboarding", current.id)
    return profile
