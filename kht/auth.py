# kht/auth.py
import logging
import secrets
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from jose import jwt
from passlib.hash import bcrypt
from sqlalchemy.orm import Session

from . import config, database, models, schemas, sms
from .deps import get_current_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["auth"])


def create_access_token(identity: models.AuthIdentity) -> str:
    expire = datetime.utcnow() + timedelta(hours=config.JWT_EXPIRE_HOURS)
    payload = {"sub": identity.id, "ver": identity.session_version, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def generate_otp() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(config.OTP_LENGTH))


def _db_user(db: Session, identity_id: str):
    return db.query(models.User).filter(models.User.id == identity_id).first()


def _clean_phone(raw: str) -> str:
    phone = sms.normalize_phone(raw)
    if not sms.is_valid_phone(phone):
        raise HTTPException(status_code=400, detail="Phone number must be in E.164 format, e.g. +14155550123")
    return phone


@router.post("/otp")
def send_otp(payload: schemas.OTPRequest, db: Session = Depends(database.get_db)):
    phone = _clean_phone(payload.phone)
    now = datetime.utcnow()

    identity = db.query(models.AuthIdentity).filter(models.AuthIdentity.phone == phone).first()
    if not identity:
        identity = models.AuthIdentity(phone=phone)
        db.add(identity)
    elif identity.otp_sent_at and now - identity.otp_sent_at < timedelta(seconds=config.OTP_RESEND_SECONDS):
        raise HTTPException(status_code=429, detail="Please wait before requesting another code")

    code = generate_otp()
    identity.otp_hash = bcrypt.hash(code)
    identity.otp_sent_at = now
    identity.otp_expires_at = now + timedelta(seconds=config.OTP_TTL_SECONDS)
    identity.otp_attempts = 0

    # the resend window only starts once a code was actually delivered
    if not sms.send_sms(phone, f"Your KHT verification code is {code}"):
        db.rollback()
        raise HTTPException(status_code=502, detail="Unable to send verification code")
    db.commit()
    logger.info("OTP sent to %s", phone)
    return {"message": "OTP sent"}


@router.post("/verify", response_model=schemas.Token)
def verify_otp(payload: schemas.OTPVerify, db: Session = Depends(database.get_db)):
    phone = _clean_phone(payload.phone)
    identity = db.query(models.AuthIdentity).filter(models.AuthIdentity.phone == phone).first()
    if not identity or not identity.otp_hash:
        raise HTTPException(status_code=401, detail="Invalid or expired code")

    if identity.otp_expires_at < datetime.utcnow() or identity.otp_attempts >= config.OTP_MAX_ATTEMPTS:
        identity.otp_hash = None
        db.commit()
        raise HTTPException(status_code=401, detail="Invalid or expired code")

    if not bcrypt.verify(payload.token.strip(), identity.otp_hash):
        identity.otp_attempts += 1
        db.commit()
        raise HTTPException(status_code=401, detail="Invalid or expired code")

    identity.otp_hash = None
    identity.otp_expires_at = None
    identity.otp_attempts = 0
    identity.last_sign_in_at = datetime.utcnow()
    db.commit()
    db.refresh(identity)

    user = _db_user(db, identity.id)
    logger.info("Identity %s signed in", identity.id)
    return {
        "access_token": create_access_token(identity),
        "token_type": "bearer",
        "user_id": identity.id,
        "is_new_user": user is None,
        "role": user.role if user else None,
    }


@router.post("/signout")
def sign_out(
    identity: models.AuthIdentity = Depends(get_current_identity),
    db: Session = Depends(database.get_db),
):
    # bumping the version invalidates every token issued so far
    identity.session_version += 1
    db.commit()
    return {"message": "Signed out"}


@router.get("/me", response_model=schemas.AuthState)
def read_auth_state(
    identity: models.AuthIdentity = Depends(get_current_identity),
    db: Session = Depends(database.get_db),
):
    user = _db_user(db, identity.id)
    return {
        "user_id": identity.id,
        "phone": identity.phone,
        "is_new_user": user is None,
        "role": user.role if user else None,
        "user": user,
    }


@users_router.post("", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def register_user(
    payload: schemas.UserCreate,
    identity: models.AuthIdentity = Depends(get_current_identity),
    db: Session = Depends(database.get_db),
):
    existing = _db_user(db, identity.id)
    if existing:
        raise HTTPException(status_code=409, detail=f"Already registered as {existing.role}")

    user = models.User(id=identity.id, phone_number=identity.phone, role=payload.role)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s %s", payload.role, user.id)
    return user
