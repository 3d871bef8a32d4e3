# kht/doctors.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import database, models, schemas
from .deps import get_current_doctor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["doctors"])

DEFAULT_AUTO_RESPONSE = "I am currently unavailable. I will respond to your message as soon as possible."


def _profile(db: Session, doctor_id: str) -> Optional[models.DoctorProfile]:
    return db.query(models.DoctorProfile).filter(models.DoctorProfile.id == doctor_id).first()


def _availability(db: Session, doctor_id: str) -> Optional[models.DoctorAvailability]:
    return (
        db.query(models.DoctorAvailability)
        .filter(models.DoctorAvailability.doctor_id == doctor_id)
        .first()
    )


def upsert_profile(db: Session, doctor_id: str, payload: schemas.DoctorProfileIn, complete: Optional[bool]):
    """Create or update the profile. ``complete=None`` leaves the completeness flag alone."""
    profile = _profile(db, doctor_id)
    if not profile:
        profile = models.DoctorProfile(id=doctor_id, is_profile_complete=False)
        db.add(profile)
    for key, value in payload.model_dump().items():
        setattr(profile, key, value)
    if complete is not None:
        profile.is_profile_complete = complete
    db.commit()
    db.refresh(profile)
    return profile


def upsert_availability(db: Session, doctor_id: str, payload: schemas.AvailabilityIn):
    if payload.end_time <= payload.start_time:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")
    row = _availability(db, doctor_id)
    if not row:
        row = models.DoctorAvailability(doctor_id=doctor_id)
        db.add(row)
    row.status = payload.status
    row.start_time = payload.start_time
    row.end_time = payload.end_time
    row.auto_response = payload.auto_response
    db.commit()
    db.refresh(row)
    return row


# ---- Profile
@router.get("/me/profile/status", response_model=schemas.DoctorProfileStatus)
def profile_status(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    profile = _profile(db, current.id)
    if not profile:
        # skeleton row so onboarding always has something to update
        profile = models.DoctorProfile(id=current.id, is_profile_complete=False)
        db.add(profile)
        db.commit()
        db.refresh(profile)
        logger.info("Created skeleton profile for doctor %s", current.id)
        return {"needs_onboarding": True, "profile": profile}
    return {"needs_onboarding": not profile.is_profile_complete, "profile": profile}


@router.get("/me/profile", response_model=schemas.DoctorProfileOut)
def get_profile(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    profile = _profile(db, current.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.put("/me/profile", response_model=schemas.DoctorProfileOut)
def update_profile(
    payload: schemas.DoctorProfileIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    return upsert_profile(db, current.id, payload, complete=True)


# ---- Onboarding (profile first, then availability)
@router.post("/onboarding/profile", response_model=schemas.DoctorProfileOut)
def onboarding_profile(
    payload: schemas.DoctorProfileIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    if not payload.full_name.strip():
        raise HTTPException(status_code=400, detail="full_name is required")
    return upsert_profile(db, current.id, payload, complete=None)


@router.post("/onboarding/availability", response_model=schemas.DoctorProfileStatus)
def onboarding_availability(
    payload: schemas.AvailabilityIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    profile = _profile(db, current.id)
    if not profile or not profile.full_name:
        raise HTTPException(status_code=400, detail="Complete the profile step first")
    upsert_availability(db, current.id, payload)
    profile.is_profile_complete = True
    db.commit()
    db.refresh(profile)
    logger.info("Doctor %s finished onboarding", current.id)
    return {"needs_onboarding": False, "profile": profile}


# ---- Availability
@router.get("/availability/defaults")
def availability_defaults(current = Depends(get_current_doctor)):
    today = datetime.utcnow().replace(minute=0, second=0, microsecond=0)
    return {
        "status": "available",
        "start_time": today.replace(hour=9),
        "end_time": today.replace(hour=17),
        "auto_response": DEFAULT_AUTO_RESPONSE,
    }


@router.get("/me/availability", response_model=Optional[schemas.AvailabilityOut])
def get_availability(
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    return _availability(db, current.id)


@router.put("/me/availability", response_model=schemas.AvailabilityOut)
def update_availability(
    payload: schemas.AvailabilityIn,
    db: Session = Depends(database.get_db),
    current = Depends(get_current_doctor),
):
    return upsert_availability(db, current.id, payload)
