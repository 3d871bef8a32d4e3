# kht/schemas.py
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Role = Literal["doctor", "patient"]
AvailabilityStatus = Literal["available", "unavailable"]

# Auth
class OTPRequest(BaseModel):
    phone: str

class OTPVerify(BaseModel):
    phone: str
    token: str

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    is_new_user: bool
    role: Optional[Role] = None

class UserCreate(BaseModel):
    role: Role

class UserOut(BaseModel):
    id: str
    phone_number: str
    role: Role
    class Config:
        from_attributes = True

class AuthState(BaseModel):
    user_id: str
    phone: str
    is_new_user: bool
    role: Optional[Role] = None
    user: Optional[UserOut] = None

# Doctor profile
class DoctorProfileIn(BaseModel):
    full_name: str
    specialization: str
    qualification: str
    years_of_experience: int = Field(ge=0)
    hospital_affiliation: Optional[str] = None

class DoctorProfileOut(BaseModel):
    id: str
    full_name: Optional[str]
    specialization: Optional[str]
    qualification: Optional[str]
    years_of_experience: Optional[int]
    hospital_affiliation: Optional[str]
    is_profile_complete: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    class Config:
        from_attributes = True

class DoctorProfileStatus(BaseModel):
    needs_onboarding: bool
    profile: Optional[DoctorProfileOut] = None

# Availability
class AvailabilityIn(BaseModel):
    status: AvailabilityStatus = "available"
    start_time: datetime
    end_time: datetime
    auto_response: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def as_naive_utc(cls, value: datetime) -> datetime:
        # stored timestamps are naive UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class AvailabilityOut(BaseModel):
    id: str
    doctor_id: str
    status: AvailabilityStatus
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    auto_response: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    class Config:
        from_attributes = True

# Patient profile
class PatientProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    allergies: Optional[List[str]] = None
    medical_conditions: Optional[List[str]] = None
    medical_history: Optional[str] = None

class PatientOnboarding(BaseModel):
    full_name: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    allergies: Optional[str] = None  # comma separated, as typed by the patient

class PatientProfileOut(BaseModel):
    id: str
    full_name: Optional[str]
    date_of_birth: Optional[date]
    gender: Optional[str]
    blood_group: Optional[str]
    allergies: Optional[List[str]]
    medical_conditions: Optional[List[str]]
    medical_history: Optional[str]
    profile_completed: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    class Config:
        from_attributes = True

class PatientProfileStatus(BaseModel):
    needs_onboarding: bool
    profile: Optional[PatientProfileOut] = None

# Contacts
class ContactCreate(BaseModel):
    phone_number: str

class ContactPatient(BaseModel):
    id: str
    phone_number: str
    patient_profile: Optional[PatientProfileOut] = None

class ContactOut(BaseModel):
    id: str
    doctor_id: str
    patient_id: str
    created_at: Optional[datetime]
    patient: Optional[ContactPatient] = None

class ContactAddResult(BaseModel):
    status: Literal["added", "invited"]
    contact: Optional[ContactOut] = None
    invite_url: Optional[str] = None

# Chat
class MessageIn(BaseModel):
    content: str

class MessageOut(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    recipient_id: Optional[str]
    sender_type: str
    content: str
    created_at: Optional[datetime]
    read_at: Optional[datetime]
    class Config:
        from_attributes = True

class DoctorInfo(BaseModel):
    id: str
    phone_number: str
    full_name: Optional[str] = None

class ChatOut(BaseModel):
    id: str
    doctor_id: str
    patient_id: str
    last_message_at: Optional[datetime]
    created_at: Optional[datetime]
    doctor: Optional[DoctorInfo] = None
    class Config:
        from_attributes = True

class ReadReceipt(BaseModel):
    updated: int
