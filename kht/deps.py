# kht/deps.py
import hmac
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config, database, models

bearer = HTTPBearer(auto_error=False)


def identity_from_token(token: str, db: Session) -> Optional[models.AuthIdentity]:
    """Resolve a session token to its identity, or None if it is invalid or signed out."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        identity_id = str(payload["sub"])
        version = int(payload.get("ver", 0))
    except (JWTError, KeyError, ValueError, TypeError):
        return None
    identity = db.query(models.AuthIdentity).filter(models.AuthIdentity.id == identity_id).first()
    if not identity or identity.session_version != version:
        return None
    return identity


def get_current_identity(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(database.get_db),
) -> models.AuthIdentity:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    identity = identity_from_token(creds.credentials, db)
    if not identity:
        raise HTTPException(status_code=401, detail="Invalid token")
    return identity


def get_current_user(
    identity: models.AuthIdentity = Depends(get_current_identity),
    db: Session = Depends(database.get_db),
) -> models.User:
    user = db.query(models.User).filter(models.User.id == identity.id).first()
    if not user:
        raise HTTPException(status_code=403, detail="User not registered")
    return user


def get_current_doctor(current: models.User = Depends(get_current_user)) -> models.User:
    if current.role != "doctor":
        raise HTTPException(status_code=403, detail="Doctor account required")
    return current


def get_current_patient(current: models.User = Depends(get_current_user)) -> models.User:
    if current.role != "patient":
        raise HTTPException(status_code=403, detail="Patient account required")
    return current


def require_service_role(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> None:
    """Edge functions are only callable by the scheduler holding the service-role key."""
    expected = config.SERVICE_ROLE_KEY
    if not expected or not creds or not hmac.compare_digest(creds.credentials, expected):
        raise HTTPException(status_code=401, detail="Service role key required")
